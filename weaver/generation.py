"""Bounded access to the optional text generator.

A generator is any callable ``generate_text(prompt, context) -> str``. The
guard gives every call a deadline and one retry; after that it raises
ExternalCallFailure and the caller falls back to its deterministic text.

Each attempt runs on its own daemon thread. A call that outlives its deadline
is abandoned: it holds no pool slot and does not keep the process alive.
"""
import logging
import threading
from typing import Callable, Optional

from .errors import ExternalCallFailure


logger = logging.getLogger(__name__)

GenerateText = Callable[[str, str], str]

# Client requests get this share of the guard's deadline.
CLIENT_TIMEOUT_SHARE = 0.9


class GuardedGenerator:
    def __init__(self, generate_text: GenerateText, timeout: float = 20, retries: int = 1):
        self._generate_text = generate_text
        self.timeout = timeout
        self.retries = retries
        self._lock = threading.Lock()
        self.stats = {"calls": 0, "failures": 0, "timeouts": 0}

    def _count(self, key):
        with self._lock:
            self.stats[key] += 1

    def _attempt(self, prompt: str, context: str):
        """Run one attempt; returns (finished, text, error)."""
        outcome = {}

        def target():
            try:
                outcome["text"] = self._generate_text(prompt, context)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=target, name="story-generator", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            return False, None, None
        return True, outcome.get("text"), outcome.get("error")

    def __call__(self, prompt: str, context: str) -> str:
        last_error = None
        for attempt in range(self.retries + 1):
            self._count("calls")
            finished, text, error = self._attempt(prompt, context)
            if not finished:
                self._count("timeouts")
                last_error = f"timed out after {self.timeout}s"
            elif error is not None:
                last_error = str(error) or type(error).__name__
            else:
                text = (text or "").strip()
                if text:
                    return text
                last_error = "empty output"
            logger.warning(f"Text generation attempt {attempt + 1} failed: {last_error}")

        self._count("failures")
        raise ExternalCallFailure(f"text generation failed: {last_error}")


def build_generator(config) -> Optional[GuardedGenerator]:
    """Create the LLM-backed generator when llm.enabled is set.

    The guard owns the single retry, so the client makes one attempt per call
    and its request timeout stays under the guard's deadline.
    """
    if not config['llm'].get('enabled'):
        return None

    from utils.llm_client import LLMClient

    timeout = config['llm']['timeout']
    client = LLMClient(config, max_retries=1, timeout=timeout * CLIENT_TIMEOUT_SHARE)
    logger.info(f"Text generation enabled with model {client.model}")
    return GuardedGenerator(client.generate_text, timeout=timeout)
