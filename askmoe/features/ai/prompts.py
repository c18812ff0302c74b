"""System prompts for the answer generator."""

from typing import Optional

from askmoe.features.questions.canonical import GENERIC

BASE_PROMPT = (
    "You are Moe, a Mission-Oriented Expert for woodworking software. "
    "Provide precise, step-by-step instructions. Format answers in clear Markdown. "
    "Be concise but thorough."
)


def build_system_prompt(platform: Optional[str], version: Optional[str]) -> str:
    if not platform or platform == GENERIC:
        return BASE_PROMPT
    target = f"{platform} version {version}" if version and version != GENERIC else platform
    return (
        f"{BASE_PROMPT} The user is specifically using {target}. "
        "Tailor your instructions to this software's interface and terminology."
    )
