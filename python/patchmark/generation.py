"""
The boundary with the text-generation service.

The service itself (transport, credentials, provider and model choice) lives
behind `PatchGenerator`; this module only describes the request, the typed
result, the prompts that teach the wire format, and an `EditSession` that
serialises requests against one document.
"""

import re
from enum import Enum
from typing import Dict, List, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

from patchmark.applicator import apply_hunks
from patchmark.document import Document
from patchmark.models import ApplyOptions, ApplyResult, ParseResult, SessionBusyError
from patchmark.parser import parse_patch
from patchmark.review import ReviewSession

logger = structlog.get_logger(__name__)


SYSTEM_PROMPT = """# Identity
You are an editing assistant. You change documents by returning precise, character-level patches.

# Format Requirements
Return ONLY the patch format below. No explanations, no code fences, no comments.

@<context>
-<text to delete>
+<text to add>
[EOF]

## Rules
1. @ line (context): the EXACT text that appears IMMEDIATELY BEFORE the change, on one line.
   - Make it unique enough to identify the location (10+ characters recommended).
   - Do NOT include the text you want to change; the context ends where the change begins.
   - For changes at the very beginning of the document use an empty context: @
2. - lines: the EXACT text to delete, character for character.
3. + lines: the EXACT text to add.
4. Every physical line of deleted or added text needs its own - or + prefix.
   Never put several lines after a single - or +.
5. For a replacement, write all - lines first, then all + lines.
6. Several changes may follow each other, each starting with its own @ line.
7. End the response with [EOF].

## Examples

### Replace a word
@# 
-Title
+Heading
[EOF]

### Insert at the beginning of the document
@
+# New Document Title
+
[EOF]

### Several changes
@First location
-old text
+new text
@Second location
-old line 1
-old line 2
+new line 1
[EOF]
"""

USER_TEMPLATE = """# Edit Request

## Current Content
{content}

## Edit Instruction
{instruction}

## Language
{language}

## Format Reminder
- @ line: context BEFORE the change (not the text to change)
- - lines: text to delete (exact match)
- + lines: text to add
- End with [EOF]

Return ONLY the patch."""


def apply_template(template: str, variables: Dict[str, str]) -> str:
    """Fills `{name}` placeholders in one pass; substituted text is never rescanned."""
    return re.sub(r"\{(\w+)\}", lambda m: variables.get(m.group(1), m.group(0)), template)


class GenerationRequest(BaseModel):
    instruction: str = Field(..., description="Free-form edit instruction.")
    content: str = Field("", description="The current document text.")
    language: str = Field("en", description="Language tag for the response.")


class GenerationFailure(str, Enum):
    MISSING_CREDENTIALS = "missing_credentials"
    TRANSPORT_ERROR = "transport_error"
    EMPTY_RESPONSE = "empty_response"


class GenerationResult(BaseModel):
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None
    failure: Optional[GenerationFailure] = None

    @classmethod
    def ok(cls, content: str) -> "GenerationResult":
        return cls(success=True, content=content)

    @classmethod
    def failed(cls, failure: GenerationFailure, error: str) -> "GenerationResult":
        return cls(success=False, failure=failure, error=error)


class PatchGenerator(Protocol):
    def generate(self, request: GenerationRequest) -> GenerationResult: ...


def build_messages(request: GenerationRequest, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    """Chat messages for a chat-completion style service."""
    user_message = apply_template(
        USER_TEMPLATE,
        {
            "content": request.content,
            "instruction": request.instruction,
            "language": request.language or "en",
        },
    )
    return [
        {"role": "system", "content": system_prompt or SYSTEM_PROMPT},
        {"role": "user", "content": user_message},
    ]


class EditOutcome(BaseModel):
    success: bool
    error: Optional[str] = None
    failure: Optional[GenerationFailure] = None
    parse: Optional[ParseResult] = None
    apply: Optional[ApplyResult] = None


class EditSession:
    """
    Drives one document through request -> parse -> apply -> review.

    Only one generation request may be outstanding at a time; a second
    call while busy raises SessionBusyError instead of queueing. So does a
    call while the previous proposal still has changes awaiting review.
    """

    def __init__(self, document: Document, generator: PatchGenerator, options: Optional[ApplyOptions] = None):
        self.document = document
        self.generator = generator
        self.options = options or ApplyOptions()
        self.busy = False
        self.review: Optional[ReviewSession] = None

    def request_edit(self, instruction: str, language: str = "en") -> EditOutcome:
        if self.busy:
            raise SessionBusyError("A generation request is already in progress")
        if self.review is not None and not self.review.is_complete:
            raise SessionBusyError(f"{len(self.review.pending())} proposed changes are still awaiting review")

        self.busy = True
        try:
            request = GenerationRequest(instruction=instruction, content=self.document.get_value(), language=language)
            generated = self.generator.generate(request)
            if not generated.success:
                logger.warning("Generation failed", failure=generated.failure, error=generated.error)
                return EditOutcome(success=False, error=generated.error, failure=generated.failure)

            if not generated.content:
                return EditOutcome(
                    success=False,
                    error="The generation service returned an empty response.",
                    failure=GenerationFailure.EMPTY_RESPONSE,
                )

            parsed = parse_patch(generated.content)
            if not parsed.success:
                return EditOutcome(success=False, error=parsed.error, parse=parsed)

            applied = apply_hunks(self.document, parsed.hunks, options=self.options)
            if self.options.highlight:
                self.review = ReviewSession(self.document, applied.changes)
            return EditOutcome(success=True, parse=parsed, apply=applied)
        finally:
            self.busy = False

    def accept_all(self) -> str:
        if self.review is None:
            return self.document.get_value()
        return self.review.accept_all()

    def reject_all(self) -> str:
        if self.review is None:
            return self.document.get_value()
        return self.review.reject_all()
