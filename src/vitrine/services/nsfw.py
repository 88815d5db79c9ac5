"""NSFW pre-check for uploaded product photos."""

import base64
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from vitrine.services.image_generation.replicate_client import run_model

BLOCKED_CATEGORIES = ("porn", "hentai")


@dataclass
class NsfwVerdict:
    flagged: bool
    category: Optional[str] = None
    score: float = 0.0


class NsfwChecker(Protocol):
    async def check(self, image: bytes) -> NsfwVerdict: ...


def interpret_output(output: Any, threshold: float) -> NsfwVerdict:
    """Normalize classifier output.

    Accepts a bare label ("normal" / "nsfw"), a {category: score} mapping, or a list of
    {"label", "score"} items. Only blocked categories at or above the threshold flag.
    """
    if isinstance(output, str):
        label = output.strip().lower()
        return NsfwVerdict(flagged=label == "nsfw", category=label, score=1.0 if label == "nsfw" else 0.0)

    if isinstance(output, list):
        output = {item["label"]: item["score"] for item in output if "label" in item}

    if isinstance(output, dict):
        worst: Optional[tuple[str, float]] = None
        for label, score in output.items():
            if str(label).lower() in BLOCKED_CATEGORIES + ("nsfw",):
                if worst is None or float(score) > worst[1]:
                    worst = (str(label), float(score))
        if worst and worst[1] >= threshold:
            return NsfwVerdict(flagged=True, category=worst[0], score=worst[1])
        return NsfwVerdict(flagged=False, category=worst[0] if worst else None, score=worst[1] if worst else 0.0)

    return NsfwVerdict(flagged=False)


class ReplicateNsfwChecker:
    """Image classifier hosted on Replicate."""

    def __init__(self, api_token: str, model_version: str, threshold: float = 0.8):
        self.api_token = api_token
        self.model_version = model_version
        self.threshold = threshold

    async def check(self, image: bytes) -> NsfwVerdict:
        """Classify an image.

        Raises:
            TransientError / PermanentError: Classified Replicate failure
        """
        data_url = "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")
        output = await run_model(self.api_token, self.model_version, {"image": data_url})
        return interpret_output(output, self.threshold)
