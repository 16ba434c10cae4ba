"""Message catalog with {placeholder} interpolation.

Unknown keys fall back to the key itself; unknown placeholders are left
as-is, so a missing translation never breaks a response.
"""

from __future__ import annotations

import re

PLACEHOLDER_PATTERN = re.compile(r"\{(\w+)\}")

DEFAULT_LOCALE = "en"

MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        # Installation / update wizard
        "install.step_missing": "Installation aborted! Can not find the requested installation step.",
        "install.drop_missing": "Installation aborted! Can not find the requested drop step.",
        "install.already_complete": "Weird... Installation should already complete...",
        "install.table_created": "Table {table} has been created.",
        "install.table_exists": "Table {table} already exists.",
        "install.table_create_error": "Error during table {table} creating",
        "install.table_dropped": "Table {table} has been dropped.",
        "install.table_missing": "Table {table} does not exist.",
        "install.table_drop_error": "Error during table {table} dropping",
        "install.config_added": "Default Config settings have been added.",
        "install.config_error": "Error during settings adding",
        "install.content_added": "Default Content has been added.",
        "install.content_error": "Error during content adding",
        "install.rules_added": "Access roles have been created.",
        "install.rules_error": "Error during access roles creating",
        "install.admin_created": (
            "Administrator account has been created. Login: {login} Password: {password} "
            "Remember to change these credentials after first login!"
        ),
        "install.admin_error": "Error during account creating",
        "install.no_admin_id": "No administrator privileges have been set!",
        "install.no_inherited_user": (
            "Cannot find inherited user of given ID. No administrator privileges have been set."
        ),
        "install.inherited_admin_set": "Administrator privileges have been set for the user of ID {id}.",
        "install.privileges_error": "Error during Administrator privileges setting!",
        "install.not_installed": "Forum is not installed yet. Run the installation wizard first.",
        "update.step_missing": "Update aborted! Can not find the requested update step.",
        "update.already_complete": "Weird... Update should already complete...",
        "update.name_missing": "Installation aborted! Column name missing.",
        "update.value_missing": "Installation aborted! Column value missing.",
        "update.value_set": "Config setting {name} has been updated to {value}.",
        "update.value_error": "Error during configuration updating",
        "wizard.busy": "Another wizard step is still running for this session.",
        # Forum
        "forum.category_missing": "Sorry! We can not find the category you are looking for.",
        "forum.forum_missing": "Sorry! We can not find the forum you are looking for.",
        "forum.thread_missing": "Sorry! We can not find the thread you are looking for.",
        "forum.post_missing": "Sorry! We can not find the post you are looking for.",
        "forum.members_only": "This page is available for registered users only.",
        "forum.maintenance": "Forum is currently under maintenance. Please come back later.",
        "forum.banned": "Your account has been banned.",
        "forum.thread_locked": "This thread is locked.",
        "forum.post_error": "Sorry! There was an error while saving the post. Contact administrator about this problem.",
        "forum.post_delete_error": "Sorry! There was an error while deleting the post.",
        "forum.not_author": "You are not allowed to change this post.",
        "forum.vote_limit": "You have reached the limit of votes per hour. Try again later.",
        "forum.vote_error": "Sorry! There was an error while voting.",
        "forum.merge_separator": "<hr>",
        # Messages
        "message.re": "Re:",
        "message.too_many": "Wait a bit before sending the next message.",
        "message.send_error": "Sorry! There was some error while sending the message.",
        "message.remove_error": "Sorry! There was some error while removing the message.",
        "message.missing": "Sorry! We can not find the message you are looking for.",
        "message.report_topic": "Complaint about the post #{id}",
        "message.report_link": "Direct link to this post",
        "message.report_contents": "Post contents",
        "message.report_error": "Sorry! There was an error while reporting the post.",
        # Subscriptions
        "subscription.error": "Sorry! There was an error while changing the subscription.",
    },
}


def t(key: str, locale: str | None = None, **params: object) -> str:
    """Translate `key` and fill its {placeholders} from `params`."""
    catalog = MESSAGES.get(locale or DEFAULT_LOCALE) or MESSAGES[DEFAULT_LOCALE]
    template = catalog.get(key) or MESSAGES[DEFAULT_LOCALE].get(key, key)

    def replacer(match: re.Match) -> str:
        name = match.group(1)
        return str(params[name]) if name in params else match.group(0)

    return PLACEHOLDER_PATTERN.sub(replacer, template)
