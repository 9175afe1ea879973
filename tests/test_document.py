"""Tests for the document model and the default merge strategy."""

import json
import time

import pytest

from docrelay.errors import DeserializeError
from docrelay.sync import Document, LWWMapStrategy, Register, empty_shape
from docrelay.sync.document import MAX_VALUE_DEPTH, SEED_NODE, nesting_depth


@pytest.fixture
def strategy():
    """Strategy that stamps seeded registers at 0."""
    return LWWMapStrategy(seed_clock=lambda: 0)


def nested(depth: int) -> str:
    return "[" * depth + "]" * depth


def entry_payload(value_text: str) -> str:
    return '{"entries":{"deep":{"value":' + value_text + ',"ts":1,"node":"x"}}}'


@pytest.fixture
def base(strategy):
    """Server-side document seeded with the empty shape."""
    return strategy.from_seed(empty_shape())


class TestDocument:
    """Tests for Document and Register."""

    def test_seed_stamps_registers(self, base):
        """Seeded keys carry timestamp 0 and the seed node."""
        assert base.clock == 0
        assert all(r.ts == 0 and r.node == SEED_NODE for r in base.entries.values())
        assert base.value() == empty_shape()

    def test_set_advances_clock(self, base):
        """Each write is stamped one past the current clock."""
        doc = base.set("field", "x", node="a")
        doc = doc.set("other", 1, node="a")

        assert doc.entries["field"].ts == 1
        assert doc.entries["other"].ts == 2
        assert doc.get("field") == "x"

    def test_set_does_not_mutate(self, base):
        """Documents are immutable values."""
        base.set("field", "x", node="a")

        assert "field" not in base.entries

    def test_value_is_a_copy(self, base):
        """Mutating the projection leaves the document alone."""
        projection = base.value()
        projection["pages"].append({"id": 1})

        assert base.get("pages") == []

    def test_register_from_dict_rejects_bad_stamp(self):
        with pytest.raises(DeserializeError):
            Register.from_dict({"value": 1, "ts": "1", "node": "a"})
        with pytest.raises(DeserializeError):
            Register.from_dict({"value": 1, "ts": True, "node": "a"})
        with pytest.raises(DeserializeError):
            Register.from_dict({"value": 1, "ts": -1, "node": "a"})

    def test_register_from_dict_requires_value(self):
        with pytest.raises(DeserializeError):
            Register.from_dict({"ts": 1, "node": "a"})


class TestSerialization:
    """Tests for serialize/deserialize."""

    def test_roundtrip(self, strategy, base):
        """deserialize(serialize(D)) == D."""
        doc = base.set("field", {"nested": [1, 2, "three"]}, node="a")

        assert strategy.deserialize(strategy.serialize(doc)) == doc

    def test_serialize_is_deterministic(self, strategy, base):
        """Key order does not affect the encoding."""
        a = Document({"x": Register(1, 1, "a"), "y": Register(2, 1, "a")})
        b = Document({"y": Register(2, 1, "a"), "x": Register(1, 1, "a")})

        assert strategy.serialize(a) == strategy.serialize(b)

    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            "[]",
            json.dumps({"pages": []}),
            json.dumps({"entries": []}),
            json.dumps({"entries": {"x": {"value": 1}}}),
            json.dumps({"entries": {"x": "plain"}}),
        ],
    )
    def test_deserialize_rejects_malformed(self, strategy, payload):
        with pytest.raises(DeserializeError):
            strategy.deserialize(payload)

    def test_deserialize_rejects_non_string(self, strategy):
        with pytest.raises(DeserializeError):
            strategy.deserialize({"entries": {}})
        with pytest.raises(DeserializeError):
            strategy.deserialize(None)

    def test_to_seed(self, strategy, base):
        doc = base.set("field", "x", node="a")

        seed = strategy.to_seed(doc)

        assert seed["field"] == "x"
        assert seed["styles"] == {"theme": {}}


class TestMerge:
    """Convergence properties of LWWMapStrategy.merge."""

    @pytest.fixture
    def edits(self, base):
        a = base.set("field", "from-a", node="a").set("pages", [{"id": "p1"}], node="a")
        b = base.set("field", "from-b", node="b")
        c = base.set("tiles", [{"id": "t1"}], node="c").set("extra", True, node="c")
        return a, b, c

    def test_idempotent(self, strategy, edits):
        """merge(D, D) == D."""
        for doc in edits:
            assert strategy.merge(doc, doc) == doc

    def test_idempotent_through_wire(self, strategy, edits):
        """Merging a document with its own serialization is a no-op."""
        a = edits[0]

        assert strategy.merge(a, strategy.deserialize(strategy.serialize(a))) == a

    def test_commutative(self, strategy, base, edits):
        """merge(merge(D, A), B) == merge(merge(D, B), A)."""
        a, b, _ = edits

        left = strategy.merge(strategy.merge(base, a), b)
        right = strategy.merge(strategy.merge(base, b), a)

        assert left == right

    def test_associative(self, strategy, edits):
        a, b, c = edits

        left = strategy.merge(strategy.merge(a, b), c)
        right = strategy.merge(a, strategy.merge(b, c))

        assert left == right

    def test_later_write_wins(self, strategy, base):
        first = base.set("field", "old", node="z")
        second = first.set("field", "new", node="a")

        merged = strategy.merge(first, second)

        assert merged.get("field") == "new"

    def test_concurrent_writes_break_ties_by_node(self, strategy, edits):
        """Equal timestamps resolve by node id, the same on every replica."""
        a, b, _ = edits

        # Both wrote "field" at ts=1; node "b" sorts after "a"
        assert strategy.merge(a, b).get("field") == "from-b"
        assert strategy.merge(b, a).get("field") == "from-b"

    def test_equal_stamps_break_ties_by_value(self, strategy):
        x = Document({"k": Register("x", 0, SEED_NODE)})
        y = Document({"k": Register("y", 0, SEED_NODE)})

        assert strategy.merge(x, y) == strategy.merge(y, x)
        assert strategy.merge(x, y).get("k") == "y"

    def test_union_of_keys(self, strategy, edits):
        a, _, c = edits

        merged = strategy.merge(a, c)

        assert merged.get("extra") is True
        assert merged.get("pages") == [{"id": "p1"}]
        assert merged.get("tiles") == [{"id": "t1"}]


class TestNesting:
    """Deeply nested values are refused before they reach a document."""

    def test_nesting_depth(self):
        assert nesting_depth(1) == 0
        assert nesting_depth([]) == 1
        assert nesting_depth({"a": [{"b": []}]}) == 4

        deep = []
        for _ in range(4999):
            deep = [deep]
        assert nesting_depth(deep) == 5000

    def test_deserialize_accepts_limit(self, strategy):
        doc = strategy.deserialize(entry_payload(nested(MAX_VALUE_DEPTH)))

        assert nesting_depth(doc.get("deep")) == MAX_VALUE_DEPTH

    def test_deserialize_rejects_too_deep(self, strategy):
        with pytest.raises(DeserializeError):
            strategy.deserialize(entry_payload(nested(600)))

    def test_deserialize_rejects_recursion_limit(self, strategy):
        with pytest.raises(DeserializeError):
            strategy.deserialize(entry_payload("[" * 200000))

    def test_from_seed_rejects_too_deep(self, strategy):
        with pytest.raises(DeserializeError):
            strategy.from_seed({"deep": json.loads(nested(MAX_VALUE_DEPTH + 1))})


class TestSeedStamps:
    """Seeded registers carry the load time, not a fixed zero."""

    def test_default_stamp_is_epoch_millis(self):
        doc = LWWMapStrategy().from_seed({"k": 1})

        assert abs(doc.entries["k"].ts - time.time() * 1000) < 60_000

    def test_write_after_restart_beats_stale_client(self):
        before = LWWMapStrategy(seed_clock=lambda: 100).from_seed({"field": "seeded"})
        stale = before.set("field", "pre-restart", node="a")

        restarted = LWWMapStrategy(seed_clock=lambda: 200)
        server = restarted.from_seed(restarted.to_seed(stale))
        fresh = server.set("field", "post-restart", node="b")

        merged = restarted.merge(fresh, stale)

        assert stale.entries["field"].ts == 101
        assert merged.get("field") == "post-restart"
