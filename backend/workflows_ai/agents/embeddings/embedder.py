import logging
from typing import Any, List, Sequence, Union

import numpy as np

from workflows_ai.models.results import NodeResult, NodeSuccess, node_failure, now_ms

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimensions differ: {va.shape[0]} vs {vb.shape[0]}")
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


async def embed(client: Any, *, texts: Union[str, List[str]], model: str) -> NodeResult:
    """Embed one or more texts. `object.embeddings` keeps input order."""
    batch = [texts] if isinstance(texts, str) else list(texts)
    if not batch:
        return node_failure("Nothing to embed", model=model)
    try:
        response = await client.aio.models.embed_content(model=model, contents=batch)
    except Exception as e:
        logger.warning("Embedding with %s failed: %s", model, e)
        return node_failure(e, model=model)

    vectors = [list(item.values) for item in response.embeddings or []]
    if len(vectors) != len(batch):
        return node_failure(
            f"Expected {len(batch)} embeddings, got {len(vectors)}", model=model
        )
    return NodeSuccess(
        object={"embeddings": vectors},
        metadata={
            "model": model,
            "count": len(vectors),
            "dimensions": len(vectors[0]) if vectors else 0,
            "timestamp": now_ms(),
        },
    )
