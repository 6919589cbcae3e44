import logging
import uuid
from typing import List, Sequence

from qdrant_client.http.models import PointStruct

from ragchat.memory.qdrant_client import QdrantVectorDB
from ragchat.models import VectorMatch, VectorRecord


logger = logging.getLogger(__name__)

# Qdrant point ids must be UUIDs; record ids map onto them deterministically
_POINT_NAMESPACE = uuid.UUID("6f1c2a4e-3b7d-5e8f-9a0b-1c2d3e4f5a6b")

_RECORD_ID_KEY = "recordId"


def point_id_for(record_id: str) -> str:

    return str(uuid.uuid5(_POINT_NAMESPACE, record_id))


class VectorStore:
    """
    Gateway over the vector index.

    upsert() overwrites by record id; query() returns matches ranked by
    descending similarity. No update/delete path.
    """

    def __init__(self, db: QdrantVectorDB):

        self._db = db

    async def upsert(self, records: Sequence[VectorRecord]) -> int:

        if not records:
            return 0

        await self._db.ensure_collection()

        points = []

        for record in records:

            payload = record.metadata.model_dump(by_alias=True, mode="json", exclude_none=True)
            payload[_RECORD_ID_KEY] = record.id

            points.append(
                PointStruct(
                    id=point_id_for(record.id),
                    vector=record.vector,
                    payload=payload,
                )
            )

        await self._db.client.upsert(
            collection_name=self._db.collection,
            points=points,
        )

        logger.info(
            "Vectors upserted",
            extra={
                "records": len(points),
                "collection": self._db.collection,
            },
        )

        return len(points)

    async def query(
        self,
        vector: Sequence[float],
        top_k: int,
        with_metadata: bool = True,
    ) -> List[VectorMatch]:

        await self._db.ensure_collection()

        response = await self._db.client.query_points(
            collection_name=self._db.collection,
            query=list(vector),
            limit=top_k,
            with_payload=with_metadata,
        )

        matches = []

        for hit in response.points:

            payload = dict(hit.payload or {})

            record_id = payload.pop(_RECORD_ID_KEY, None) or str(hit.id)

            matches.append(
                VectorMatch(
                    id=record_id,
                    score=float(hit.score),
                    metadata=payload if with_metadata else None,
                )
            )

        matches.sort(key=lambda match: match.score, reverse=True)

        return matches

    async def count(self) -> int:

        await self._db.ensure_collection()

        result = await self._db.client.count(
            collection_name=self._db.collection,
            exact=True,
        )

        return result.count
