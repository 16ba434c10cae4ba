"""Default content seed data: terms and e-mail templates."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agora.db.models import Content

TERMS_AND_CONDS = "terms"
EMAIL_REGISTRATION = "email-reg"
EMAIL_PASSWORD = "email-pass"
EMAIL_REACTIVATION = "email-react"
EMAIL_NEW = "email-new"
EMAIL_SUBSCRIPTION = "email-sub"

DEFAULT_CONTENT: dict[str, dict[str, str]] = {
    TERMS_AND_CONDS: {
        "topic": "Forum Terms and Conditions",
        "content": (
            "<p>Please remember that we are not responsible for any messages posted. "
            "We do not vouch for or warrant the accuracy, completeness or usefulness of any post, "
            "and are not responsible for the contents of any post.</p>"
            "<p>The posts express the views of the author of the post, not necessarily the views "
            "of this forum. Any user who feels that a posted message is objectionable is encouraged "
            "to contact us immediately by e-mail or by reporting the post.</p>"
        ),
    },
    EMAIL_REGISTRATION: {
        "topic": "Welcome to {forum}! This is your activation link",
        "content": (
            "<p>Thank you for registering at {forum}!</p>"
            "<p>To activate your account open the following link in your browser:</p>"
            "<p>{link}</p><p>See you soon!<br>{forum}</p>"
        ),
    },
    EMAIL_PASSWORD: {
        "topic": "{forum} password reset link",
        "content": (
            "<p>{forum} password reset link</p>"
            "<p>To change your password open the following link in your browser:</p>"
            "<p>{link}</p><p>See you soon!<br>{forum}</p>"
        ),
    },
    EMAIL_REACTIVATION: {
        "topic": "{forum} account reactivation",
        "content": (
            "<p>{forum} account reactivation</p>"
            "<p>You have requested a new activation link. "
            "To activate your account open the following link in your browser:</p>"
            "<p>{link}</p><p>See you soon!<br>{forum}</p>"
        ),
    },
    EMAIL_NEW: {
        "topic": "New e-mail activation link at {forum}",
        "content": (
            "<p>New e-mail address activation</p>"
            "<p>To activate your new e-mail address open the following link in your browser:</p>"
            "<p>{link}</p><p>See you soon!<br>{forum}</p>"
        ),
    },
    EMAIL_SUBSCRIPTION: {
        "topic": "New post in subscribed thread at {forum}",
        "content": (
            "<p>There has been new post added in the thread you are subscribing. "
            "Click the following link to read the thread.</p>"
            "<p>{link}</p><p>See you soon!<br>{forum}</p>"
        ),
    },
}


def fill(template: str, **values: str) -> str:
    """Replace {name} markers in a content template; unknown markers stay."""
    for name, value in values.items():
        template = template.replace("{" + name + "}", value)
    return template


async def get_content(db: AsyncSession, name: str) -> dict[str, str]:
    """Return the stored template, falling back to the built-in default."""
    result = await db.execute(select(Content).where(Content.name == name))
    row = result.scalar_one_or_none()
    if row is not None:
        return {"topic": row.topic, "content": row.content}
    return dict(DEFAULT_CONTENT[name])
