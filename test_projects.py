"""Tests for project switching, listing and deletion."""

import pytest

from errors import ValidationError
from memory_store import create_memory, find_memory, init_database
from models import DEFAULT_PROJECT, Session
from projects import count_project, delete_project, list_projects, switch_project
from relations import create_relation, relations_of


class TestSwitchProject:
    async def test_switch_to_new_project(self, session):
        await init_database()
        assert switch_project(session, "alpha") is True
        assert session.project == "alpha"
        assert not session.is_default

    async def test_switch_to_existing_project(self, session):
        await create_memory(Session(project="alpha"), "fact")
        assert switch_project(session, "alpha") is False

    async def test_new_memories_land_in_current_project(self, session):
        await init_database()
        switch_project(session, "alpha")
        row = await create_memory(session, "fact")
        assert find_memory(row["id"])["project"] == "alpha"
        assert count_project("alpha") == 1
        assert count_project(DEFAULT_PROJECT) == 0

    async def test_invalid_name_keeps_current(self, session):
        switch_project(session, "alpha")
        with pytest.raises(ValidationError):
            switch_project(session, "bad name!")
        assert session.project == "alpha"


class TestListProjects:
    async def test_empty(self, session):
        await init_database()
        assert list_projects(session) == []

    async def test_default_first_then_most_recent(self, session):
        await create_memory(session, "default one")
        await create_memory(Session(project="older"), "older one")
        await create_memory(Session(project="newer"), "newer one")
        await create_memory(Session(project="newer"), "newer two")

        projects = list_projects(session)
        assert [p["name"] for p in projects] == [DEFAULT_PROJECT, "newer", "older"]
        assert [p["memoryCount"] for p in projects] == [1, 2, 1]
        assert projects[0]["isCurrent"] is True
        assert not any(p["isCurrent"] for p in projects[1:])
        newer = projects[1]
        assert newer["firstCreated"] <= newer["lastUpdated"]

    async def test_current_flag_follows_session(self):
        await create_memory(Session(project="alpha"), "fact")
        session = Session(project="alpha")
        projects = list_projects(session)
        assert projects == [
            {
                "name": "alpha",
                "memoryCount": 1,
                "firstCreated": projects[0]["firstCreated"],
                "lastUpdated": projects[0]["lastUpdated"],
                "isCurrent": True,
            }
        ]


class TestDeleteProject:
    async def test_requires_confirmation(self, session):
        await create_memory(Session(project="alpha"), "fact")
        for confirm in (False, None, "true", 1):
            with pytest.raises(ValidationError):
                delete_project(session, "alpha", confirm)
        assert count_project("alpha") == 1

    async def test_deletes_memories_and_relations(self, session):
        alpha = Session(project="alpha")
        kept = await create_memory(session, "default fact")
        first = await create_memory(alpha, "alpha fact")
        second = await create_memory(alpha, "another alpha fact")
        create_relation(first["id"], second["id"])
        create_relation(kept["id"], first["id"])

        memories, relations = delete_project(session, "alpha", True)
        assert (memories, relations) == (2, 2)
        assert count_project("alpha") == 0
        assert find_memory(kept["id"])["content"] == "default fact"
        assert relations_of(kept["id"]) == []

    async def test_deleting_current_project_resets_session(self):
        session = Session(project="alpha")
        await create_memory(session, "fact")
        delete_project(session, "alpha", True)
        assert session.project == DEFAULT_PROJECT

    async def test_deleting_other_project_keeps_session(self):
        session = Session(project="beta")
        await create_memory(Session(project="alpha"), "fact")
        delete_project(session, "alpha", True)
        assert session.project == "beta"

    async def test_unknown_project(self, session):
        await init_database()
        assert delete_project(session, "ghost", True) == (0, 0)

    async def test_default_project(self, session):
        await create_memory(session, "default fact")
        await create_memory(Session(project="alpha"), "alpha fact")
        assert delete_project(session, DEFAULT_PROJECT, True) == (1, 0)
        assert count_project(DEFAULT_PROJECT) == 0
        assert count_project("alpha") == 1
