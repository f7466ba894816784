"""Trigger detection: does this event ask the assistant to do anything?"""

from __future__ import annotations

import logging
import re

from assistant_action.config import ActionConfig
from assistant_action.context import EventContext

logger = logging.getLogger(__name__)


def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"(^|\s){re.escape(phrase)}([\s.,!?;:]|$)")


def contains_trigger_phrase(text: str, phrase: str) -> bool:
    """Return True when *phrase* appears in *text* as a standalone word."""
    if not text or not phrase:
        return False
    return bool(_phrase_pattern(phrase).search(text))


def check_contains_trigger(context: EventContext, config: ActionConfig) -> bool:
    """Evaluate the trigger conditions for an entity event."""
    if config.prompt.strip():
        logger.info("Explicit prompt configured; trigger satisfied")
        return True

    assignee_trigger = config.assignee_trigger.strip().lstrip("@")
    if (
        context.event_name == "issues"
        and context.event_action == "assigned"
        and assignee_trigger
        and context.assignee_login == assignee_trigger
    ):
        logger.info("Issue assigned to trigger user '%s'", assignee_trigger)
        return True

    if (
        context.event_name == "issues"
        and context.event_action == "labeled"
        and config.label_trigger
        and context.label_name == config.label_trigger
    ):
        logger.info("Issue labeled with trigger label '%s'", config.label_trigger)
        return True

    phrase = config.trigger_phrase
    if context.event_name in {"issues", "pull_request"} and context.event_action in {"opened", "edited"}:
        for field_name, text in (("body", context.entity_body), ("title", context.entity_title)):
            if contains_trigger_phrase(text, phrase):
                logger.info("Entity %s contains trigger phrase '%s'", field_name, phrase)
                return True

    if context.event_name == "pull_request_review" and contains_trigger_phrase(context.review_body, phrase):
        logger.info("Review body contains trigger phrase '%s'", phrase)
        return True

    if context.event_name in {"issue_comment", "pull_request_review_comment"} and contains_trigger_phrase(
        context.comment_body, phrase
    ):
        logger.info("Comment contains trigger phrase '%s'", phrase)
        return True

    logger.info("No trigger was met for %s", phrase)
    return False


def extract_user_request(comment_body: str | None, trigger_phrase: str) -> str | None:
    """Return the text after the trigger phrase, or None.

    ``"@assistant /review please"`` -> ``"/review please"``. Plain string
    search keeps this linear on very large comment bodies.
    """
    if not comment_body or not trigger_phrase:
        return None
    index = comment_body.lower().find(trigger_phrase.lower())
    if index == -1:
        return None
    remainder = comment_body[index + len(trigger_phrase) :].strip()
    return remainder or None
