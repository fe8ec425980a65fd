"""
OpenAI model and classification backends.

Both backends bound every call with a client-side timeout and never retry;
retry policy belongs to the caller.
"""

from typing import Any, Optional

from openai import OpenAI, OpenAIError

from ..core.errors import ModelInvocationFailed
from ..core.orchestrator import ModelResponse
from ..core.pricing import calculate_cost
from ..core.quota import ModelTier
from ..core.router import Estimate, ModelCatalog
from ..core.token_counter import TokenUsage

CLASSIFIER_PROMPT = (
    "You route user questions to an AI model. Reply with exactly one word: "
    "CHEAPEST for greetings and trivial lookups, BASIC for ordinary questions, "
    "ADVANCED for multi-step reasoning, code or analysis."
)


class OpenAIModelBackend:
    """Answers queries with OpenAI chat completions and prices the usage.
    
    The returned cost is computed from the provider's reported token usage
    and the local pricing table, never taken from the client.
    """
    
    def __init__(self, timeout_seconds: float = 30.0, client: Optional[Any] = None):
        """Initialize the backend.
        
        Args:
            timeout_seconds: Upper bound on a single model call
            client: Preconfigured OpenAI client (optional)
            
        Raises:
            ValueError: If timeout_seconds is not positive
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.timeout_seconds = timeout_seconds
        self.client = client or OpenAI(timeout=timeout_seconds, max_retries=0)
    
    def invoke(self, model: str, query: str) -> ModelResponse:
        """Send a query to a model.
        
        Args:
            model: OpenAI model name
            query: User query text
            
        Returns:
            Generated text with the realized cost
            
        Raises:
            ModelInvocationFailed: On API errors, timeouts or missing usage data
        """
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": query}]
            )
        except OpenAIError as e:
            raise ModelInvocationFailed(f"OpenAI call to {model} failed: {e}", model=model) from e
        
        usage = response.usage
        if not usage:
            raise ModelInvocationFailed("OpenAI response missing usage information", model=model)
        
        cost = calculate_cost(model, TokenUsage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens
        ))
        text = response.choices[0].message.content or ""
        return ModelResponse(text=text, cost=cost, model=model)


class OpenAIQueryClassifier:
    """Asks the cheapest model which model tier a query needs."""
    
    def __init__(
        self,
        models: ModelCatalog,
        timeout_seconds: float = 10.0,
        client: Optional[Any] = None
    ):
        self.models = models
        self.client = client or OpenAI(timeout=timeout_seconds, max_retries=0)
    
    def classify(self, query: str) -> Estimate:
        """Classify a query into a model tier with an estimated cost.
        
        Raises:
            ModelInvocationFailed: On API errors or an unusable answer
        """
        model = self.models.cheapest
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": CLASSIFIER_PROMPT},
                    {"role": "user", "content": query}
                ],
                max_tokens=3,
                temperature=0
            )
        except OpenAIError as e:
            raise ModelInvocationFailed(f"Query classification failed: {e}", model=model) from e
        
        answer = (response.choices[0].message.content or "").strip().strip(".")
        try:
            tier = ModelTier.parse(answer)
        except ValueError:
            raise ModelInvocationFailed(f"Unusable classification answer: {answer!r}", model=model)
        return Estimate(model_tier=tier, estimated_cost=self.models.price(tier, query))
