"""Tests for similarity search."""

import pytest

from embedding import cosine_similarity, embed
from errors import ValidationError
from memory_store import create_memory, init_database, update_memory
from models import CONFIG, Session
from search import rank_candidates, search_memories

CORPUS = ["Milo is a dog", "my dog likes to run", "Tristan lives in Shanghai"]


class TestRankCandidates:
    def test_orders_and_filters(self):
        query = [1.0, 0.0]
        rows = [
            {"id": "b", "vector": [1.0, 1.0]},
            {"id": "a", "vector": [1.0, 0.0]},
            {"id": "c", "vector": [0.0, 1.0]},
            {"id": "z", "vector": [0.0, 0.0]},
        ]
        ranked = rank_candidates(rows, query, limit=5, threshold=0.5)
        assert [r["id"] for r in ranked] == ["a", "b"]
        assert ranked[0]["similarity"] == pytest.approx(1.0)
        assert ranked[1]["similarity"] == pytest.approx(2**-0.5)

    def test_threshold_is_strict(self):
        ranked = rank_candidates([{"id": "a", "vector": [1.0, 0.0]}], [1.0, 0.0], 5, 1.0)
        assert ranked == []

    def test_ties_break_on_id_and_limit_applies(self):
        rows = [{"id": i, "vector": [2.0, 0.0]} for i in ("c", "a", "b")]
        ranked = rank_candidates(rows, [1.0, 0.0], limit=2, threshold=0.0)
        assert [r["id"] for r in ranked] == ["a", "b"]


class TestSearchMemories:
    async def _seed(self, session):
        return [await create_memory(session, text) for text in CORPUS]

    async def test_ranked_above_threshold(self, session):
        await self._seed(session)
        query = "dog"
        expected = sorted(
            ((cosine_similarity(embed(text), embed(query)), text) for text in CORPUS),
            reverse=True,
        )
        threshold = (expected[1][0] + expected[2][0]) / 2

        results = await search_memories(session, query, limit=5, threshold=threshold)
        assert [r["content"] for r in results] == [text for _, text in expected[:2]]
        for result, (similarity, _) in zip(results, expected):
            assert result["similarity"] == pytest.approx(similarity, abs=1e-5)
            assert result["similarity"] > threshold
            assert set(result) == {
                "id", "content", "metadata", "createdAt", "updatedAt", "similarity"
            }

    async def test_limit(self, session):
        await self._seed(session)
        results = await search_memories(session, "dog", limit=1, threshold=-1.0)
        assert len(results) == 1

    async def test_no_matches_is_empty(self, session):
        await self._seed(session)
        assert await search_memories(session, "dog", threshold=1.0) == []

    async def test_empty_database(self, session):
        await init_database()
        assert await search_memories(session, "dog") == []

    async def test_query_without_words(self, session):
        await self._seed(session)
        assert await search_memories(session, "?!", threshold=-1.0) == []

    async def test_project_isolation(self, session):
        alpha = Session(project="alpha")
        await create_memory(session, "dog in the default project")
        await create_memory(alpha, "dog in the alpha project")

        default_hits = await search_memories(session, "dog", threshold=-1.0)
        alpha_hits = await search_memories(alpha, "dog", threshold=-1.0)
        beta_hits = await search_memories(Session(project="beta"), "dog", threshold=-1.0)

        assert [r["content"] for r in default_hits] == ["dog in the default project"]
        assert [r["content"] for r in alpha_hits] == ["dog in the alpha project"]
        assert beta_hits == []

    async def test_sees_updated_content(self, session):
        row = await create_memory(session, "Tristan lives in Shanghai")
        await update_memory(row["id"], content="dog")
        results = await search_memories(session, "dog", threshold=0.99)
        assert [r["id"] for r in results] == [row["id"]]
        assert results[0]["similarity"] == pytest.approx(1.0, abs=1e-5)

    @pytest.mark.parametrize("query", ["", "   ", None])
    async def test_rejects_blank_query(self, session, query):
        with pytest.raises(ValidationError):
            await search_memories(session, query)

    @pytest.mark.parametrize("limit", [0, -1, CONFIG.max_limit + 1])
    async def test_rejects_bad_limit(self, session, limit):
        with pytest.raises(ValidationError):
            await search_memories(session, "dog", limit=limit)
