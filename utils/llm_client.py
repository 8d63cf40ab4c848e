"""LLM client for an OpenAI-compatible text generation endpoint."""
import time
import logging
import threading
from openai import OpenAI


logger = logging.getLogger(__name__)


class _SharedRateLimiter:
    """Thread-safe shared leaky-bucket limiter (start-time pacing).

    Spaces out *start times* for requests. Multiple requests can still be
    in flight concurrently when latency exceeds the interval.
    """

    def __init__(self, rate_limit_per_minute):
        self._lock = threading.Lock()
        self._next_allowed_time = 0.0
        self._interval_s = self._calc_interval(rate_limit_per_minute)

    @staticmethod
    def _calc_interval(rate_limit_per_minute):
        if not rate_limit_per_minute or rate_limit_per_minute <= 0:
            return 0.0
        return 60.0 / float(rate_limit_per_minute)

    def update_rate_limit(self, rate_limit_per_minute):
        """Adopt the strictest (largest) interval seen for this limiter."""
        new_interval = self._calc_interval(rate_limit_per_minute)
        if new_interval <= 0:
            return
        with self._lock:
            if new_interval > self._interval_s:
                self._interval_s = new_interval

    def wait(self):
        interval = self._interval_s
        if interval <= 0:
            return

        with self._lock:
            now = time.time()
            if now < self._next_allowed_time:
                wait_s = self._next_allowed_time - now
                self._next_allowed_time += interval
            else:
                wait_s = 0.0
                self._next_allowed_time = now + interval

        if wait_s > 0:
            time.sleep(wait_s)


class LLMClient:
    """Calls the chat completions API on behalf of the text generator."""
    _global_call_stats = {}
    _global_call_stats_lock = threading.Lock()
    _shared_rate_limiters = {}
    _shared_rate_limiters_lock = threading.Lock()

    def __init__(self, config, max_retries=None, timeout=None):
        """
        Initialize LLM client with config.

        Args:
            config: Merged config
            max_retries: Attempts per call (defaults to llm.max_retries)
            timeout: Request timeout in seconds (defaults to llm.timeout)
        """
        llm_config = config['llm']
        self.base_url = llm_config['base_url']
        self.api_key = llm_config['api_key']
        self.model = llm_config['model']
        self.timeout = llm_config.get('timeout', 20) if timeout is None else timeout
        if max_retries is None:
            max_retries = llm_config.get('max_retries', 2)
        self.max_retries = max(1, int(max_retries))
        self.retry_delay = llm_config.get('retry_delay', 1)
        self.temperature = llm_config.get('temperature', 0.7)

        self.client = OpenAI(
            base_url=self.base_url,
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
        )

        self.call_stats = {}
        self._rate_limiter = self._get_shared_rate_limiter(
            key=(self.base_url, self.api_key),
            rate_limit_per_minute=llm_config.get('rate_limit_per_minute', 30),
        )

    @classmethod
    def _get_shared_rate_limiter(cls, key, rate_limit_per_minute):
        with cls._shared_rate_limiters_lock:
            limiter = cls._shared_rate_limiters.get(key)
            if limiter is None:
                limiter = _SharedRateLimiter(rate_limit_per_minute)
                cls._shared_rate_limiters[key] = limiter
            else:
                limiter.update_rate_limit(rate_limit_per_minute)
            return limiter

    def _track_call(self, model, tokens_used):
        stats = self.call_stats.setdefault(model, {'calls': 0, 'tokens': 0})
        stats['calls'] += 1
        stats['tokens'] += tokens_used

        with LLMClient._global_call_stats_lock:
            totals = LLMClient._global_call_stats.setdefault(model, {'calls': 0, 'tokens': 0})
            totals['calls'] += 1
            totals['tokens'] += tokens_used

    def call(self, prompt, system_prompt=None, temperature=None):
        """
        Call the chat completions API with retries.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            temperature: Sampling temperature (defaults to llm.temperature)

        Returns:
            Response text
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        for attempt in range(self.max_retries):
            try:
                self._rate_limiter.wait()
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.temperature if temperature is None else temperature,
                )

                usage = getattr(response, 'usage', None)
                self._track_call(self.model, usage.total_tokens if usage else 0)
                return response.choices[0].message.content or ""

            except Exception as e:
                logger.error(f"LLM call failed (attempt {attempt + 1}): {e}")
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_delay * (attempt + 1))
                else:
                    raise

        raise RuntimeError(f"LLM call failed after {self.max_retries} retries")

    def generate_text(self, prompt, context):
        """Generator entry point: `context` is the passage the prompt refers to."""
        return self.call(f"{prompt}\n\nText:\n{context}").strip()

    @classmethod
    def get_global_stats(cls):
        """Get call statistics aggregated across all instances."""
        with cls._global_call_stats_lock:
            return {model: dict(stats) for model, stats in cls._global_call_stats.items()}

    @classmethod
    def reset_global_stats(cls):
        with cls._global_call_stats_lock:
            cls._global_call_stats = {}
