"""
sitemaster/ai.py

AI collaborators: voice-note transcription and executive site summaries.

Both sit behind the SiteAssistant interface:
    transcribe(base64_audio) -> text
    summarize(project, dprs, materials) -> text

Providers:
- GeminiAssistant: Google Gemini via google-genai (GEMINI_API_KEY).
- StubAssistant: deterministic canned output for dev/testing. No API key required.

IMPORTANT:
- A failing provider must never block the DPR/task workflow. Errors are logged
  and a fixed sentinel string is returned instead of raising.
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from typing import Iterable

from google import genai
from google.genai import types

from .models import DPR, MaterialRequest, MaterialStatus, Project

logger = logging.getLogger(__name__)

TRANSCRIPTION_ERROR = "Error transcribing voice note."
TRANSCRIPTION_EMPTY = "No transcription generated."
SUMMARY_ERROR = "AI Service unavailable currently."
SUMMARY_EMPTY = "Could not generate summary."

RECENT_DPR_COUNT = 3

TRANSCRIBE_PROMPT = (
    "You are a professional construction site supervisor. Transcribe the following site voice note "
    "into a concise, formal progress description for a daily report. Focus on activities completed "
    "and resources used."
)


def summary_context(project: Project, dprs: Iterable[DPR], materials: Iterable[MaterialRequest]) -> tuple[list, list]:
    """The project's last few DPRs and its still-Requested materials."""
    recent = [d for d in dprs if d.project_id == project.id][-RECENT_DPR_COUNT:]
    pending = [m for m in materials if m.project_id == project.id and m.status == MaterialStatus.REQUESTED]
    return recent, pending


def build_summary_prompt(project: Project, dprs: list[DPR], materials: list[MaterialRequest]) -> str:
    dpr_lines = "\n".join(
        f"- [{d.date}]: {d.description} (Workforce: {d.workforce_count})" for d in dprs
    ) or "- none"
    material_lines = "\n".join(
        f"- {m.quantity:g} {m.unit or ''} of {m.item_name}".replace("  ", " ") for m in materials
    ) or "- none"

    return (
        "Role: Construction Project Manager Assistant.\n"
        f'Task: Generate a concise, executive summary (max 100 words) for the project "{project.name}".\n\n'
        f"Recent Daily Progress Reports:\n{dpr_lines}\n\n"
        f"Pending Material Requests:\n{material_lines}\n\n"
        "Output Format:\n"
        "1. Overall Status: [Good/Delayed/Critical]\n"
        "2. Key Achievement: [One sentence]\n"
        "3. Blockers/Needs: [One sentence mentioning materials or issues]"
    )


# ---------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------
class SiteAssistant(ABC):
    """
    Capability interface. Subclasses implement the raw provider calls;
    the public methods here own the never-raise contract.
    """

    @abstractmethod
    def _transcribe(self, audio: bytes) -> str | None:
        ...

    @abstractmethod
    def _generate(self, prompt: str) -> str | None:
        ...

    def transcribe(self, base64_audio: str) -> str:
        try:
            audio = base64.b64decode(base64_audio, validate=True)
            text = self._transcribe(audio)
        except Exception:
            logger.exception("Transcription error")
            return TRANSCRIPTION_ERROR
        return text or TRANSCRIPTION_EMPTY

    def summarize(self, project: Project, dprs: Iterable[DPR], materials: Iterable[MaterialRequest]) -> str:
        try:
            recent, pending = summary_context(project, dprs, materials)
            text = self._generate(build_summary_prompt(project, recent, pending))
        except Exception:
            logger.exception("AI generation error for project %s", getattr(project, "id", None))
            return SUMMARY_ERROR
        return text or SUMMARY_EMPTY


# ---------------------------------------------------------------------
# Gemini provider
# ---------------------------------------------------------------------
class GeminiAssistant(SiteAssistant):
    """Google Gemini (google-genai)."""

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        self.api_key = api_key
        self.model = model
        self._client = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _transcribe(self, audio: bytes) -> str | None:
        response = self._get_client().models.generate_content(
            model=self.model,
            contents=[
                TRANSCRIBE_PROMPT,
                types.Part.from_bytes(data=audio, mime_type="audio/wav"),
            ],
        )
        return response.text

    def _generate(self, prompt: str) -> str | None:
        response = self._get_client().models.generate_content(model=self.model, contents=prompt)
        return response.text


# ---------------------------------------------------------------------
# Local stub (dev/test)
# ---------------------------------------------------------------------
class StubAssistant(SiteAssistant):
    """Deterministic responses. Records the prompts it was given."""

    def __init__(self, transcription: str = "Stub transcription of site voice note.", summary: str | None = None):
        self.transcription = transcription
        self.summary = summary
        self.prompts: list[str] = []

    def _transcribe(self, audio: bytes) -> str | None:
        return self.transcription

    def _generate(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        if self.summary is not None:
            return self.summary
        status = "Delayed" if "Pending Material Requests:\n- none" not in prompt else "Good"
        return (
            f"1. Overall Status: {status}\n"
            "2. Key Achievement: Work progressed as reported.\n"
            "3. Blockers/Needs: Review pending material requests."
        )


def build_assistant(config) -> SiteAssistant:
    """Provider selected by AI_PROVIDER ("gemini" | "stub")."""
    provider = (config.get("AI_PROVIDER") or "stub").lower()
    if provider == "gemini":
        return GeminiAssistant(config.get("GEMINI_API_KEY", ""), model=config.get("AI_MODEL", "gemini-2.5-flash"))
    if provider == "stub":
        return StubAssistant()
    raise ValueError(f"Unknown AI_PROVIDER: {provider}")
