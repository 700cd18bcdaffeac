"""State -> mascot rendering. Pure lookups, no behavior of its own."""

from typing import Optional

from core.state import AssistantState, EmotionalMood, Snapshot

ANIMATIONS = {
    AssistantState.IDLE: "/copilot/idle.gif",
    AssistantState.LISTENING: "/copilot/listening.gif",
    AssistantState.THINKING: "/copilot/thinking.gif",
    AssistantState.SPEAKING: "/copilot/speaking.gif",
    AssistantState.UNSURE: "/copilot/unsure.gif",
    AssistantState.WARNING: "/copilot/warning.gif",
    AssistantState.LAUGH: "/copilot/laugh.gif",
}

FALLBACK_IMAGE = "/character/assistant.png"

STATUS_TEXT = {
    AssistantState.IDLE: "Ready when you are",
    AssistantState.LISTENING: "Listening...",
    AssistantState.THINKING: "Reading the label...",
    AssistantState.SPEAKING: "Here's what I found",
    AssistantState.UNSURE: "I'm not completely sure about this one",
    AssistantState.WARNING: "Hmm, something's off",
    AssistantState.LAUGH: "Hehe, that tickles!",
}


def mood_tint(snapshot: Snapshot) -> Optional[str]:
    # Mood only colors the mascot while it is talking
    if snapshot.state != AssistantState.SPEAKING:
        return None
    if snapshot.mood == EmotionalMood.NEGATIVE:
        return "amber"
    if snapshot.mood == EmotionalMood.POSITIVE:
        return "green"
    return None


def render(snapshot: Snapshot) -> dict:
    return {
        "animation": ANIMATIONS[snapshot.state],
        "fallback_image": FALLBACK_IMAGE,
        "status": snapshot.error_message or STATUS_TEXT[snapshot.state],
        "tint": mood_tint(snapshot),
    }
