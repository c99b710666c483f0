"""
Tests for the node registry.

Run with: python -m pytest tests/test_registry.py -v
"""

import threading

import pytest

from ringcache.cluster import (
    DuplicateNodeError,
    EmptyRingError,
    HashFunction,
    HashRing,
    NodeRegistry,
    PhysicalNode,
    RingFullError,
    RingSnapshot,
    UnknownNodeError,
)


class TestRegistryAdd:
    """Test add()."""

    def test_add_registers_and_places_node(self):
        """A node is both registered and on the ring."""
        registry = NodeRegistry(virtual_nodes=4)
        registry.add(PhysicalNode("A", address="a:7171"))

        assert "A" in registry
        assert "A" in registry.ring
        assert len(registry.ring) == 4
        assert registry.get("A").address == "a:7171"

    def test_add_duplicate(self, registry: NodeRegistry):
        """Registering the same id twice fails without side effects."""
        before = registry.view()
        with pytest.raises(DuplicateNodeError):
            registry.add(PhysicalNode("A", address="other:7171"))
        assert registry.view() is before
        assert registry.get("A").address == "a.cache:7171"

    def test_add_ring_full_leaves_registry_unchanged(self):
        """If the ring rejects a node the registry does too."""
        registry = NodeRegistry(virtual_nodes=200, hash_function=HashFunction("sha256", 8))
        registry.add(PhysicalNode("A"))
        with pytest.raises(RingFullError):
            registry.add(PhysicalNode("B"))
        assert "B" not in registry
        assert "B" not in registry.ring

    def test_ring_is_read_only_snapshot(self, registry: NodeRegistry):
        """The ring can only change through the registry."""
        ring = registry.ring
        assert isinstance(ring, RingSnapshot)
        assert not hasattr(ring, "add_node")
        assert not hasattr(ring, "remove_node")
        with pytest.raises(TypeError):
            ring.placements["Z"] = (1,)

        registry.add(PhysicalNode("D"))
        view = registry.view()
        assert set(view.nodes) == set(view.ring.nodes) == {"A", "B", "C", "D"}
        assert registry.ring is view.ring
        assert "D" not in ring


class TestRegistryRemove:
    """Test remove()."""

    def test_remove_returns_node(self, registry: NodeRegistry):
        """Removal returns the node and takes it off the ring."""
        node = registry.remove("B")
        assert node.node_id == "B"
        assert "B" not in registry
        assert "B" not in registry.ring
        assert len(registry.ring) == 6

    def test_remove_unknown_does_not_touch_ring(self, registry: NodeRegistry):
        """Unknown ids fail before any ring mutation."""
        before = registry.ring
        with pytest.raises(UnknownNodeError):
            registry.remove("Z")
        assert registry.ring is before

    def test_remove_last_node_empties_ring(self):
        """With no nodes left, lookups fail again."""
        registry = NodeRegistry(virtual_nodes=2)
        registry.add(PhysicalNode("A"))
        registry.remove("A")
        with pytest.raises(EmptyRingError):
            registry.view().resolve("user:42")


class TestRegistryLookup:
    """Test get(), list() and views."""

    def test_get_unknown(self, registry: NodeRegistry):
        """get() raises for unknown ids; the error is also a KeyError."""
        with pytest.raises(UnknownNodeError):
            registry.get("Z")
        with pytest.raises(KeyError):
            registry.get("Z")

    def test_list_snapshot(self, registry: NodeRegistry):
        """list() is a snapshot, unaffected by later changes."""
        nodes = registry.list()
        registry.remove("C")
        assert sorted(n.node_id for n in nodes) == ["A", "B", "C"]
        assert sorted(n.node_id for n in registry.list()) == ["A", "B"]

    def test_view_is_consistent(self, registry: NodeRegistry):
        """A view's nodes and ring always describe the same membership."""
        view = registry.view()
        assert set(view.nodes) == set(view.ring.nodes)
        registry.remove("A")
        # Old view is unchanged
        assert set(view.nodes) == {"A", "B", "C"}
        assert set(view.ring.nodes) == {"A", "B", "C"}
        new_view = registry.view()
        assert set(new_view.nodes) == set(new_view.ring.nodes) == {"B", "C"}

    def test_view_resolution_matches_ring(self, registry: NodeRegistry):
        """Resolving through a view agrees with a ring built the same way."""
        ring = HashRing(virtual_nodes=3)
        for node_id in ("A", "B", "C"):
            ring.add_node(node_id)
        view = registry.view()
        for i in range(200):
            key = f"user:{i}"
            assert view.resolve(key) == ring.resolve(key)
            assert view.resolve_n(key, 2) == ring.resolve_n(key, 2)

    def test_view_nodes_read_only(self, registry: NodeRegistry):
        """Views cannot be mutated."""
        with pytest.raises(TypeError):
            registry.view().nodes["D"] = PhysicalNode("D")

    def test_len(self, registry: NodeRegistry):
        assert len(registry) == 3


@pytest.mark.slow
class TestRegistryConcurrency:
    """Readers never see a torn registry while membership changes."""

    def test_readers_see_consistent_views(self):
        """Concurrent add/remove never exposes a half-applied change."""
        registry = NodeRegistry(virtual_nodes=20)
        for i in range(4):
            registry.add(PhysicalNode(f"base-{i}"))

        stop = threading.Event()
        errors = []

        def reader():
            i = 0
            while not stop.is_set():
                view = registry.view()
                try:
                    assert set(view.nodes) == set(view.ring.nodes)
                    assert len(view.ring.positions) == 20 * len(view.nodes)
                    assert list(view.ring.positions) == sorted(view.ring.positions)
                    owner = view.resolve(f"key:{i}")
                    assert owner in view.nodes
                    replicas = view.resolve_n(f"key:{i}", 3)
                    assert len(set(replicas)) == len(replicas) == 3
                except AssertionError as exc:
                    errors.append(exc)
                    return
                i += 1

        def writer():
            for round_ in range(50):
                node_id = f"churn-{round_ % 3}"
                registry.add(PhysicalNode(node_id))
                registry.remove(node_id)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for thread in readers:
            thread.start()
        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        writer_thread.join()
        stop.set()
        for thread in readers:
            thread.join()

        assert errors == []
        assert sorted(registry.ring.nodes) == [f"base-{i}" for i in range(4)]
