"""
Tests for GraphModelStore: validation, cascades, compound operations and loading.
"""

import pytest

from modelgraph.errors import (
    BusyError,
    DuplicateEdgeError,
    HierarchyCycleError,
    NotFoundError,
    PersistenceError,
    ProtectedNodeError,
    ValidationError,
)
from modelgraph.handles import is_valid_handle
from modelgraph.models import ComponentDataRole, DataClass, EdgeDirection, FlowDirection, NodeCategory
from modelgraph.storage.file_backend import FileBackend
from modelgraph.storage.memory_backend import InMemoryBackend
from modelgraph.store import GraphModelStore


class FailingFlowBackend(InMemoryBackend):
    """Rejects every data-flow upsert."""

    def upsert_edge_data_flow(self, data):
        raise PersistenceError("Data-flow service unavailable", status_code=503)


class FlakyBackend(InMemoryBackend):
    """Lets a test switch individual list calls into failure."""

    def __init__(self):
        super().__init__()
        self.fail_data_objects = False
        self.fail_nodes = False

    def list_nodes(self):
        if self.fail_nodes:
            raise PersistenceError("nodes unavailable", status_code=500)
        return super().list_nodes()

    def list_data_objects(self):
        if self.fail_data_objects:
            raise PersistenceError("data objects unavailable", status_code=500)
        return super().list_data_objects()


class ReentrantBackend(InMemoryBackend):
    """Calls back into the store while a node is being created."""

    store = None

    def create_node(self, data):
        inner, self.store = self.store, None
        if inner is not None:
            inner.create_node("Inner", "Component")
        return super().create_node(data)


def _component(store, name, parent=None):
    return store.create_node(name, NodeCategory.COMPONENT, parent)


def _container(store, name, parent=None):
    return store.create_node(name, NodeCategory.CONTAINER, parent)


class TestNodeValidation:
    """Invariants enforced before anything reaches the backend."""

    def test_blank_name_rejected(self, store, backend):
        with pytest.raises(ValidationError, match="Name is required"):
            store.create_node("   ", "Component")
        assert len(backend.list_nodes()) == 1

    def test_unknown_category_rejected(self, store):
        with pytest.raises(ValidationError, match="Unknown category"):
            store.create_node("Robot", "Robot")

    def test_category_accepts_tag(self, store):
        node = store.create_node("Line 1", "Container")
        assert node.is_container

    def test_missing_parent(self, store):
        with pytest.raises(NotFoundError):
            store.create_node("PLC1", "Component", parent_node_id="nope")

    def test_component_parent_rejected(self, store, backend):
        plc = _component(store, "PLC1")
        with pytest.raises(ValidationError, match="Parent node must be a container"):
            store.create_node("Sensor", "Component", parent_node_id=plc.id)
        assert len(backend.list_nodes()) == 2

    def test_reparent_under_component_rejected(self, store):
        plc = _component(store, "PLC1")
        hmi = _component(store, "HMI1")
        with pytest.raises(ValidationError, match="Parent node must be a container"):
            store.update_node(hmi.id, parent_node_id=plc.id)
        assert store.get_node(hmi.id).parent_node_id is None

    def test_parent_map(self, store):
        line = _container(store, "Line 1")
        plc = _component(store, "PLC1", line.id)
        parents = store.parent_map()
        assert parents[plc.id] == line.id
        assert parents[line.id] is None

    def test_unknown_patch_field(self, store):
        plc = _component(store, "PLC1")
        with pytest.raises(ValidationError):
            store.update_node(plc.id, category="Container")

    def test_self_parent_rejected(self, store):
        plant = _container(store, "Plant")
        with pytest.raises(HierarchyCycleError):
            store.update_node(plant.id, parent_node_id=plant.id)

    def test_descendant_parent_rejected(self, store):
        plant = _container(store, "Plant")
        line = _container(store, "Line 1", plant.id)
        cell = _container(store, "Cell", line.id)
        with pytest.raises(HierarchyCycleError):
            store.update_node(plant.id, parent_node_id=cell.id)
        assert store.get_node(plant.id).parent_node_id is None

    def test_reparent_and_clear_parent(self, store):
        plant = _container(store, "Plant")
        plc = _component(store, "PLC1")
        assert store.update_node(plc.id, parent_node_id=plant.id).parent_node_id == plant.id
        assert store.update_node(plc.id, parent_node_id="").parent_node_id is None


class TestGlobalContainer:
    """The protected root container."""

    def test_created_once(self, store):
        first = store.global_container
        assert first is not None
        assert store.ensure_global_container().id == first.id
        assert sum(1 for n in store.nodes.values() if n.name == "Global") == 1

    def test_second_global_rejected(self, store):
        with pytest.raises(ProtectedNodeError):
            store.create_node("Global", "Container")

    def test_cannot_rename_move_or_delete(self, store):
        global_id = store.global_container.id
        plant = _container(store, "Plant")
        with pytest.raises(ProtectedNodeError):
            store.update_node(global_id, name="World")
        with pytest.raises(ProtectedNodeError):
            store.update_node(global_id, parent_node_id=plant.id)
        with pytest.raises(ProtectedNodeError):
            store.delete_node(global_id)
        assert store.get_node(global_id).name == "Global"

    @pytest.mark.parametrize("name", ["Global", "global", "  GLOBAL "])
    def test_name_is_reserved(self, store, name):
        plant = _container(store, "Plant")
        with pytest.raises(ProtectedNodeError):
            store.update_node(plant.id, name=name)
        with pytest.raises(ProtectedNodeError):
            store.create_node(name, NodeCategory.CONTAINER)
        with pytest.raises(ProtectedNodeError):
            store.create_node(name, NodeCategory.COMPONENT)
        assert store.get_node(plant.id).name == "Plant"

    def test_identity_is_stable_on_file_backend(self, tmp_path):
        backend = FileBackend(tmp_path / "plant-a")
        store = GraphModelStore(backend)
        store.refresh()
        real = store.ensure_global_container()
        zones = [_container(store, f"Zone {i}") for i in range(6)]

        for zone in zones:
            with pytest.raises(ProtectedNodeError):
                store.update_node(zone.id, name="Global")

        # A second Global written behind the store's back sorts first on disk
        backend.create_node({"id": "0-impostor", "name": "Global", "category": "Container"})
        store.refresh()

        assert store.global_container.id == real.id
        with pytest.raises(ProtectedNodeError):
            store.delete_node(real.id)
        assert real.id in store.nodes

    def test_unpinned_choice_is_deterministic(self, backend):
        backend.create_node({"id": "g-2", "name": "Global", "category": "Container"})
        backend.create_node({"id": "g-1", "name": "global", "category": "Container"})
        first, second = GraphModelStore(backend), GraphModelStore(backend)
        first.refresh()
        second.refresh()
        assert first.global_container.id == second.global_container.id == "g-1"

    def test_description_is_editable(self, store):
        global_id = store.global_container.id
        assert store.update_node(global_id, description="Everything").description == "Everything"


class TestEdges:
    """Interface creation rules."""

    def test_self_loop_rejected(self, store):
        plc = _component(store, "PLC1")
        with pytest.raises(ValidationError, match="Source and target must be different nodes"):
            store.create_edge(plc.id, plc.id)

    def test_duplicate_reports_existing(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        edge = store.create_edge(plc.id, hmi.id)
        with pytest.raises(DuplicateEdgeError) as exc_info:
            store.create_edge(plc.id, hmi.id, EdgeDirection.BIDIRECTIONAL)
        assert exc_info.value.existing_edge_id == edge.id
        assert len(store.edges) == 1

    def test_reverse_pair_is_allowed(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        store.create_edge(plc.id, hmi.id)
        store.create_edge(hmi.id, plc.id)
        assert len(store.edges) == 2

    def test_handles_resolved_on_create(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        edge = store.create_edge(plc.id, hmi.id, source_handle_id="nonsense")
        assert is_valid_handle(edge.source_handle_id)
        assert is_valid_handle(edge.target_handle_id)

    def test_update_rejects_unknown_handle(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        edge = store.create_edge(plc.id, hmi.id)
        with pytest.raises(ValidationError):
            store.update_edge(edge.id, source_handle_id="top-99")

    def test_update_endpoints_rechecks_duplicates(self, store):
        a, b, c = _component(store, "A"), _component(store, "B"), _component(store, "C")
        store.create_edge(a.id, b.id)
        edge = store.create_edge(a.id, c.id)
        with pytest.raises(DuplicateEdgeError):
            store.update_edge(edge.id, target_node_id=b.id)
        moved = store.update_edge(edge.id, source_node_id=b.id)
        assert moved.endpoints == (b.id, c.id)


class TestDeleteNode:
    """Cascading node deletion."""

    def test_cascade_and_child_promotion(self, store, backend):
        plant = _container(store, "Plant")
        plc = _component(store, "PLC1", plant.id)
        hmi = _component(store, "HMI1")
        result = store.connect_nodes(plc.id, hmi.id)
        recipe = store.create_data_object("Recipe")
        store.assign_component_data(plant.id, recipe.id, ComponentDataRole.STORES)

        record = store.delete_node(plant.id)
        assert record.promoted_child_ids == [plc.id]
        assert store.get_node(plc.id).parent_node_id is None
        assert not store.links_for_node(plant.id)
        assert store.layout.position_of(plant.id) is None

        store.delete_node(plc.id)
        assert result.edge.id not in store.edges
        assert not store.flows_for_edge(result.edge.id)
        assert backend.list_edge_data_flows() == []
        # The data object itself survives node deletion
        assert result.data_object.id in store.data_objects

    def test_reinstate_puts_everything_back(self, store):
        plant = _container(store, "Plant")
        plc = _component(store, "PLC1", plant.id)
        hmi = _component(store, "HMI1")
        connected = store.connect_nodes(plant.id, hmi.id)

        record = store.delete_node(plant.id)
        store.reinstate_node(record)

        assert store.get_node(plc.id).parent_node_id == plant.id
        assert connected.edge.id in store.edges
        assert (connected.edge.id, connected.data_object.id) in store.edge_data_flows


class TestConnect:
    """Direct connect gesture."""

    def test_creates_edge_data_object_and_flow(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        result = store.connect_nodes(plc.id, hmi.id)

        assert result.data_object.name == "PLC1 --> HMI1"
        assert result.data_object.data_class is DataClass.OTHER
        assert result.flow.direction is FlowDirection.SOURCE_TO_TARGET
        assert store.edge_data_flows[(result.edge.id, result.data_object.id)] == result.flow
        assert is_valid_handle(result.edge.source_handle_id)

    def test_generated_name_is_unique(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        store.create_data_object("PLC1 --> HMI1")
        result = store.connect_nodes(plc.id, hmi.id)
        assert result.data_object.name == "PLC1 --> HMI1 (2)"

    def test_rollback_when_flow_fails(self):
        backend = FailingFlowBackend()
        store = GraphModelStore(backend)
        store.refresh()
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")

        with pytest.raises(PersistenceError):
            store.connect_nodes(plc.id, hmi.id)

        assert store.edges == {}
        assert store.data_objects == {}
        assert backend.list_edges() == []
        assert backend.list_data_objects() == []


class TestDataObjects:
    """Names, ratings and pruning."""

    def test_names_are_unique_case_insensitively(self, store):
        assert store.create_data_object("recipe").name == "recipe"
        assert store.create_data_object("Recipe").name == "Recipe (2)"
        assert store.create_data_object("recipe").name == "recipe (3)"

    def test_rename_keeps_own_name(self, store):
        recipe = store.create_data_object("Recipe")
        assert store.update_data_object(recipe.id, name="RECIPE").name == "RECIPE"

    @pytest.mark.parametrize("value", [0, 11, True, 5.5, "7"])
    def test_invalid_ratings(self, store, value):
        with pytest.raises(ValidationError):
            store.create_data_object("Recipe", confidentiality=value)
        assert store.data_objects == {}

    def test_unknown_data_class(self, store):
        with pytest.raises(ValidationError):
            store.create_data_object("Recipe", "Secret")

    def test_delete_prunes_sole_payload_edge(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        result = store.connect_nodes(plc.id, hmi.id)
        record = store.delete_data_object(result.data_object.id)
        assert [e.id for e in record.pruned_edges] == [result.edge.id]
        assert result.edge.id not in store.edges

    def test_delete_keeps_shared_edge(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        result = store.connect_nodes(plc.id, hmi.id)
        recipe = store.create_data_object("Recipe")
        store.assign_edge_data_flow(result.edge.id, recipe.id)

        record = store.delete_data_object(result.data_object.id)
        assert record.pruned_edges == []
        assert result.edge.id in store.edges
        assert [f.data_object_id for f in store.flows_for_edge(result.edge.id)] == [recipe.id]

    def test_reinstate_data_object(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        result = store.connect_nodes(plc.id, hmi.id)
        store.assign_component_data(hmi.id, result.data_object.id, "Receives")

        record = store.delete_data_object(result.data_object.id)
        store.reinstate_data_object(record)

        assert result.edge.id in store.edges
        assert (result.edge.id, result.data_object.id) in store.edge_data_flows
        assert store.component_data[(hmi.id, result.data_object.id)].role is ComponentDataRole.RECEIVES


class TestLinks:
    """Component-data links and edge data flows."""

    def test_assign_overwrites_and_keeps_notes(self, store):
        plc = _component(store, "PLC1")
        recipe = store.create_data_object("Recipe")
        store.assign_component_data(plc.id, recipe.id, "Stores", notes="local copy")
        link = store.assign_component_data(plc.id, recipe.id, "Processes")
        assert link.role is ComponentDataRole.PROCESSES
        assert link.notes == "local copy"
        assert len(store.component_data) == 1

    def test_remove_missing_link(self, store):
        with pytest.raises(NotFoundError):
            store.remove_component_data("a", "b")
        with pytest.raises(NotFoundError):
            store.remove_edge_data_flow("a", "b")

    def test_unknown_role(self, store):
        plc = _component(store, "PLC1")
        recipe = store.create_data_object("Recipe")
        with pytest.raises(ValidationError):
            store.assign_component_data(plc.id, recipe.id, "Owns")


class TestDataFlowMapping:
    """Receives / SendsTo / FetchesFrom mapping."""

    @pytest.fixture
    def model(self, store):
        mes, plc = _component(store, "MES"), _component(store, "PLC1")
        recipe = store.create_data_object("Recipe", DataClass.PRODUCTION_DATA)
        return store, mes, plc, recipe

    def test_resolve_or_create(self, model):
        store, mes, plc, _ = model
        edge, direction, created = store.resolve_or_create_edge_for_flow(mes.id, plc.id)
        assert created and direction is FlowDirection.SOURCE_TO_TARGET
        again, direction, created = store.resolve_or_create_edge_for_flow(plc.id, mes.id)
        assert again.id == edge.id
        assert direction is FlowDirection.TARGET_TO_SOURCE
        assert not created

    def test_receives_creates_edge_flow_and_link(self, model):
        store, mes, plc, recipe = model
        result = store.map_data_flow(plc.id, recipe.id, "Receives", mes.id)

        assert result.edge_created
        assert result.edge.endpoints == (mes.id, plc.id)
        assert result.flow.direction is FlowDirection.SOURCE_TO_TARGET
        assert store.component_data[(plc.id, recipe.id)].role is ComponentDataRole.RECEIVES

    def test_sends_to_reuses_edge(self, model):
        store, mes, plc, recipe = model
        store.map_data_flow(plc.id, recipe.id, "FetchesFrom", mes.id)
        result = store.map_data_flow(mes.id, recipe.id, "SendsTo", plc.id)

        assert not result.edge_created
        assert len(store.edges) == 1
        assert len(store.edge_data_flows) == 1
        assert result.flow.direction is FlowDirection.SOURCE_TO_TARGET

    def test_opposite_flow_becomes_bidirectional(self, model):
        store, mes, plc, recipe = model
        first = store.map_data_flow(plc.id, recipe.id, "Receives", mes.id)
        second = store.map_data_flow(mes.id, recipe.id, "Receives", plc.id)

        assert second.edge.id == first.edge.id
        assert second.flow.direction is FlowDirection.BIDIRECTIONAL
        assert store.component_data[(mes.id, recipe.id)].role is ComponentDataRole.RECEIVES

    def test_same_component_rejected(self, model):
        store, mes, _, recipe = model
        with pytest.raises(ValidationError):
            store.map_data_flow(mes.id, recipe.id, "SendsTo", mes.id)

    def test_unknown_intent(self, model):
        store, mes, plc, recipe = model
        with pytest.raises(ValidationError):
            store.map_data_flow(mes.id, recipe.id, "Steals", plc.id)

    def test_unmap_removes_created_edge(self, model):
        store, mes, plc, recipe = model
        result = store.map_data_flow(plc.id, recipe.id, "Receives", mes.id)
        store.unmap_data_flow(result)
        assert store.edges == {}
        assert store.edge_data_flows == {}
        assert store.component_data == {}

    def test_unmap_restores_previous_flow(self, model):
        store, mes, plc, recipe = model
        store.map_data_flow(plc.id, recipe.id, "Receives", mes.id)
        second = store.map_data_flow(mes.id, recipe.id, "Receives", plc.id)
        store.unmap_data_flow(second)

        flow = store.edge_data_flows[(second.edge.id, recipe.id)]
        assert flow.direction is FlowDirection.SOURCE_TO_TARGET
        assert (mes.id, recipe.id) not in store.component_data


class TestLoading:
    """refresh() behaviour with partial or malformed data."""

    def test_auxiliary_failure_keeps_last_known_state(self):
        backend = FlakyBackend()
        store = GraphModelStore(backend)
        store.refresh()
        recipe = store.create_data_object("Recipe")

        backend.fail_data_objects = True
        store.refresh()

        assert store.warning == "Data objects could not be loaded; showing the last known state."
        assert recipe.id in store.data_objects

        backend.fail_data_objects = False
        store.refresh()
        assert store.warning is None

    def test_node_failure_raises_and_keeps_state(self):
        backend = FlakyBackend()
        store = GraphModelStore(backend)
        store.refresh()
        plc = store.create_node("PLC1", "Component")

        backend.fail_nodes = True
        with pytest.raises(PersistenceError):
            store.refresh()
        assert plc.id in store.nodes

    def test_malformed_rows_raise_persistence_error(self):
        backend = InMemoryBackend()
        backend.list_nodes = lambda: [{"name": "no id"}]
        with pytest.raises(PersistenceError):
            GraphModelStore(backend).refresh()

    def test_invalid_handles_repaired_in_memory(self, backend):
        a = backend.create_node({"name": "A", "category": "Component"})
        b = backend.create_node({"name": "B", "category": "Component"})
        edge = backend.create_edge({"sourceNodeId": a["id"], "targetNodeId": b["id"],
                                    "sourceHandleId": "bogus", "targetHandleId": "left-50"})
        store = GraphModelStore(backend)
        store.refresh()

        assert store.repaired_edge_ids == [edge["id"]]
        assert is_valid_handle(store.edges[edge["id"]].source_handle_id)
        assert store.edges[edge["id"]].target_handle_id == "left-50"
        # Stored row is left alone
        assert backend.list_edges()[0]["sourceHandleId"] == "bogus"

    def test_legacy_system_category(self, backend):
        backend.create_node({"name": "Old", "category": "System"})
        store = GraphModelStore(backend)
        store.refresh()
        assert all(n.is_container for n in store.nodes.values())

    def test_every_node_gets_a_position(self, store):
        plant = _container(store, "Plant")
        plc = _component(store, "PLC1", plant.id)
        assert store.layout.has_position(plant.id)
        assert store.layout.has_position(plc.id)


class TestQueries:
    """Read-only views."""

    def test_containment_candidates(self, store):
        plant = _container(store, "Plant")
        line = _container(store, "Line 1", plant.id)
        other = _container(store, "Utilities")
        candidates = store.containment_candidates(plant.id)
        assert other.id in candidates
        assert plant.id not in candidates
        assert line.id not in candidates
        assert store.global_container.id not in candidates

    def test_to_networkx(self, store):
        plc, hmi = _component(store, "PLC1"), _component(store, "HMI1")
        result = store.connect_nodes(plc.id, hmi.id)
        graph = store.to_networkx()
        assert graph.nodes[plc.id]["name"] == "PLC1"
        data = graph.get_edge_data(plc.id, hmi.id, key=result.edge.id)
        assert data["data_objects"] == ["PLC1 --> HMI1"]
        assert data["direction"] == "A_TO_B"


class TestBusyGuard:
    """Re-entrant create is rejected."""

    def test_reentrant_create_raises(self):
        backend = ReentrantBackend()
        store = GraphModelStore(backend)
        store.refresh()
        backend.store = store

        with pytest.raises(BusyError):
            store.create_node("Outer", "Component")
        assert not store.is_busy("create_node")
