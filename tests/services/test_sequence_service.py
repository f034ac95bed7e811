"""
Tests for SequenceService: locked counter rows, one per named sequence.
"""

from sqlalchemy import select

from procurement_kernel.services.sequence_service import SequenceCounter, SequenceService


class TestNextValue:

    def test_starts_at_one(self, session):
        seq = SequenceService(session)

        assert seq.next_value("po_number:MM:20250324") == 1
        assert seq.next_value("po_number:MM:20250324") == 2

    def test_sequences_are_independent(self, session):
        seq = SequenceService(session)

        seq.next_value("a")
        seq.next_value("a")

        assert seq.next_value("b") == 1
        assert seq.current_value("a") == 2

    def test_seed_used_only_on_creation(self, session):
        seq = SequenceService(session)
        calls = []

        def seed():
            calls.append(1)
            return 7

        assert seq.next_value("seeded", seed=seed) == 8
        assert seq.next_value("seeded", seed=seed) == 9
        assert calls == [1]

    def test_counter_row_persisted(self, session):
        SequenceService(session).next_value("persisted")

        row = session.execute(
            select(SequenceCounter).where(SequenceCounter.name == "persisted")
        ).scalar_one()
        assert row.current_value == 1

    def test_rollback_returns_value(self, session):
        seq = SequenceService(session)
        seq.next_value("rolled")
        session.commit()

        seq.next_value("rolled")
        session.rollback()

        assert seq.current_value("rolled") == 1


class TestCurrentValue:

    def test_unknown_sequence(self, session):
        assert SequenceService(session).current_value("missing") is None

    def test_reset(self, session):
        seq = SequenceService(session)
        seq.next_value("r")
        seq.next_value("r")

        seq.reset("r", 10)

        assert seq.next_value("r") == 11

    def test_reset_creates_counter(self, session):
        seq = SequenceService(session)

        seq.reset("fresh", 4)

        assert seq.current_value("fresh") == 4
