"""
Recorded OpenAI client wrapper.

Records task events for each chat completion without modifying behavior.
"""

import time
from typing import Any, Dict, List, Optional

from openai import OpenAI

from .recorder import SessionRecorder


class RecordedOpenAI:
    """OpenAI client wrapper that records one task per chat completion.

    A successful call becomes a task_complete carrying the response's token
    usage; a failed call becomes a task_error and the exception is re-raised
    unchanged.
    """

    def __init__(self, recorder: SessionRecorder, model: str, client: Optional[OpenAI] = None):
        """Initialize recorded OpenAI client.

        Args:
            recorder: Session recorder receiving the task events (required)
            model: OpenAI model name (required)
            client: Preconfigured OpenAI client; a default one is created when None

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.recorder = recorder
        self.model = model
        self.client = client or OpenAI()

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        task_type: str = "chat_completion",
        **kwargs: Any
    ) -> Any:
        """Create chat completion and record it as a task.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            task_type: Task label stored in the event metadata
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response

        Raises:
            ValueError: If messages is empty
            OpenAI API errors: Propagated after a task_error is recorded
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        self.recorder.task_start(task_type=task_type)
        started = time.monotonic()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except Exception as e:
            self.recorder.task_error(
                error_code=type(e).__name__,
                error_message=str(e),
                duration_ms=_elapsed_ms(started),
                task_type=task_type,
            )
            raise

        usage = response.usage
        self.recorder.task_complete(
            tokens_input=usage.prompt_tokens if usage else 0,
            tokens_output=usage.completion_tokens if usage else 0,
            duration_ms=_elapsed_ms(started),
            task_type=task_type,
        )

        # Return original OpenAI response unchanged
        return response


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)
