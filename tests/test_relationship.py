import pytest

from rapport.analytics.relationship import RelationshipType, classify_relationship, relationship_for
from rapport.exceptions import InvalidRequestError
from rapport.models import Conversation


class TestClassifyRelationship:
    def test_mutual_partners_are_romantic(self):
        assert classify_relationship(["a", "b"], mutual_partners=True) is RelationshipType.ROMANTIC

    def test_two_without_link_are_platonic(self):
        assert classify_relationship(["a", "b"], mutual_partners=False) is RelationshipType.PLATONIC

    def test_three_or_more_are_a_group(self):
        assert classify_relationship(["a", "b", "c"], mutual_partners=False) is RelationshipType.GROUP
        assert classify_relationship(["a", "b", "c", "d"], mutual_partners=True) is RelationshipType.GROUP

    def test_coach_is_not_a_participant(self):
        assert classify_relationship(["a", "b", "coach"], mutual_partners=False) is RelationshipType.PLATONIC

    @pytest.mark.parametrize("participants", [[], ["a"], ["a", "coach"]])
    def test_too_few_participants(self, participants):
        with pytest.raises(InvalidRequestError):
            classify_relationship(participants, mutual_partners=False)


class TestRelationshipFor:
    @pytest.mark.asyncio
    async def test_romantic(self, db, romantic):
        assert await relationship_for(romantic, db) is RelationshipType.ROMANTIC

    @pytest.mark.asyncio
    async def test_one_sided_link_is_platonic(self, db, users):
        users["sam"].partner_id = "alex"
        conv = Conversation(conversation_id="c-one-sided", participants=["alex", "sam"])
        db.add(conv)
        await db.flush()

        # alex points at jordan, so the link is not mutual
        assert await relationship_for(conv, db) is RelationshipType.PLATONIC

    @pytest.mark.asyncio
    async def test_group(self, db, group):
        assert await relationship_for(group, db) is RelationshipType.GROUP
