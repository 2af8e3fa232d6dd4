"""
Exact matchers: the two non-biometric rungs of the ladder.

ExactHintStrategy accepts an externally supplied identity id (for example a
manually entered ID card number) when it exists in the registry.
ExactStringStrategy accepts a query signature whose storage string equals
an enrolled one character for character.
"""

import logging
from typing import Optional

from faceid.matching.interfaces import MatchMethod, MatchStrategy, StrategyOutcome
from faceid.samples import Modality

logger = logging.getLogger(__name__)


class ExactHintStrategy(MatchStrategy):
    method = MatchMethod.EXACT_HINT

    def evaluate(self, query_samples, registry, hint_id=None) -> Optional[StrategyOutcome]:
        if not hint_id:
            return None

        for identity in registry:
            if identity.identity_id == hint_id:
                return StrategyOutcome(
                    method=self.method,
                    accepted=True,
                    matched_id=hint_id,
                    score=1.0,
                    ranked=[(hint_id, 1.0)],
                )

        logger.info(f"Hint id {hint_id!r} not enrolled; falling back to biometrics")
        return StrategyOutcome(
            method=self.method, accepted=False, details={"hint_not_found": hint_id}
        )


class ExactStringStrategy(MatchStrategy):
    method = MatchMethod.EXACT_STRING

    def evaluate(self, query_samples, registry, hint_id=None) -> Optional[StrategyOutcome]:
        queries = {
            s.signature.to_string() for s in query_samples if s.modality == Modality.GEOMETRIC
        }
        if not queries:
            return None

        for identity in registry:
            for stored in identity.geometric_samples:
                if stored in queries:
                    return StrategyOutcome(
                        method=self.method,
                        accepted=True,
                        matched_id=identity.identity_id,
                        score=1.0,
                        ranked=[(identity.identity_id, 1.0)],
                        details={"signature": stored},
                    )

        return StrategyOutcome(method=self.method, accepted=False)
