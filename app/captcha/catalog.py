"""
Icon catalog for image challenges. Tiles are sent as category tags; the client maps
each tag to an icon locally, so nothing here ever leaves the server as an image.
"""
from __future__ import annotations

# Categories that can be asked for, with the label shown in the prompt.
TARGET_LABELS: dict[str, str] = {
    "shield": "shields",
    "lock": "padlocks",
    "key": "keys",
    "server": "servers",
    "database": "databases",
    "cloud": "clouds",
    "globe": "globes",
    "star": "stars",
}

# Every tag the client knows how to draw; distractors are drawn from here.
ALL_CATEGORIES: tuple[str, ...] = (
    "shield", "lock", "key", "server", "database", "cloud", "wifi", "monitor", "cpu",
    "harddrive", "globe", "mail", "user", "camera", "music", "heart", "star", "zap", "bell",
)

TARGET_CATEGORIES: tuple[str, ...] = tuple(TARGET_LABELS)


def label_for(category: str) -> str:
    return TARGET_LABELS.get(category, category)


def distractors_for(target: str) -> tuple[str, ...]:
    return tuple(c for c in ALL_CATEGORIES if c != target)
