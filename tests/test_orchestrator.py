"""Tests for dependency-ordered regeneration."""

import sys
import threading

import pytest
from conftest import SCHEMA_AB, write_config
from livebuild.api import build_rules, create_detector
from livebuild.codes import FailureCode
from livebuild.kernel.change_detector import ChangeDetector
from livebuild.kernel.errors import DatabaseError
from livebuild.kernel.graph import ArtifactGraph, DerivationRule, Effect
from livebuild.kernel.hash_utils import hash_bytes
from livebuild.kernel.kinds import ArtifactKind, InputKind
from livebuild.kernel.orchestrator import Orchestrator
from livebuild.steps.db import SqliteMigrator


class FlakyMigrator:
    """Migrator that fails while ``fail`` is set."""

    def __init__(self, database_path):
        self.fail = False
        self.calls = 0
        self._inner = SqliteMigrator(database_path)

    def migrate(self, db_schema):
        self.calls += 1
        if self.fail:
            raise DatabaseError("connection refused")
        return self._inner.migrate(db_schema)


@pytest.fixture
def migrator(tmp_path):
    return FlakyMigrator(tmp_path / "cache.db")


@pytest.fixture
def orchestrator(settings, migrator):
    orch = Orchestrator(
        ArtifactGraph(build_rules(migrator)),
        create_detector(settings.model_copy(update={"fingerprint_cache_path": None})),
        max_workers=2,
    )
    yield orch
    orch.close()


def versions(store):
    return {record.kind: record.version for record in store}


class TestBootstrap:
    def test_builds_every_artifact(self, orchestrator):
        report = orchestrator.bootstrap()
        assert report.ok
        assert report.trigger == "bootstrap"
        assert set(report.rebuilt) == set(ArtifactKind)
        assert orchestrator.store.check_consistency() == set()
        context = orchestrator.store.value(ArtifactKind.HANDLER_CONTEXT)
        assert context.entity_names == ["A"]
        assert context.handler_names == ["Token:Approval", "Token:Transfer"]

    def test_unreadable_input_is_reported(self, project, orchestrator):
        (project / "livebuild.config.json").unlink()
        report = orchestrator.bootstrap()
        failure = report.failures[ArtifactKind.PARSED_CONFIG]
        assert failure.code == FailureCode.IO_ERROR
        assert failure.input_path.endswith("livebuild.config.json")
        assert ArtifactKind.HANDLER_CONTEXT in report.skipped
        assert ArtifactKind.GQL_SCHEMA in report.rebuilt


class TestSettle:
    def test_unchanged_input_is_noop(self, orchestrator):
        orchestrator.bootstrap()
        before = versions(orchestrator.store)
        report = orchestrator.handle_settle(InputKind.SCHEMA_FILE)
        assert report.changed is False
        assert report.rebuilt == []
        assert versions(orchestrator.store) == before
        assert orchestrator.chains_run == 1

    def test_entity_added(self, project, orchestrator):
        """Schema {A} -> {A, B} rebuilds the schema chain and the handler context."""
        orchestrator.bootstrap()
        config_version = orchestrator.store.get(ArtifactKind.PARSED_CONFIG).version

        (project / "schema.graphql").write_text(SCHEMA_AB)
        report = orchestrator.handle_settle(InputKind.SCHEMA_FILE)

        assert report.ok
        assert set(report.rebuilt) == {
            ArtifactKind.PARSED_SCHEMA,
            ArtifactKind.GQL_SCHEMA,
            ArtifactKind.DB_SCHEMA,
            ArtifactKind.MIGRATED_DB,
            ArtifactKind.HANDLER_CONTEXT,
        }
        store = orchestrator.store
        assert store.get(ArtifactKind.PARSED_CONFIG).version == config_version
        assert "B" in store.value(ArtifactKind.GQL_SCHEMA).type_map
        assert store.value(ArtifactKind.DB_SCHEMA).table_names == ["A", "B"]
        assert store.value(ArtifactKind.MIGRATED_DB).tables_created == ["B"]
        assert store.value(ArtifactKind.HANDLER_CONTEXT).entity_names == ["A", "B"]
        # Handler context is published after the db schema it was built from
        assert store.get(ArtifactKind.HANDLER_CONTEXT).version > store.get(ArtifactKind.DB_SCHEMA).version

    def test_invalid_config(self, project, orchestrator):
        """A broken config leaves the schema chain untouched."""
        orchestrator.bootstrap()
        before = versions(orchestrator.store)

        (project / "livebuild.config.json").write_text('{"networks": [')
        report = orchestrator.handle_settle(InputKind.CONFIG_FILE)

        assert report.failures[ArtifactKind.PARSED_CONFIG].code == FailureCode.PARSE_ERROR
        assert report.failures[ArtifactKind.PARSED_CONFIG].step == "parse_config_file"
        assert report.skipped == [ArtifactKind.HANDLER_CONTEXT]
        store = orchestrator.store
        assert ArtifactKind.PARSED_CONFIG not in store
        assert ArtifactKind.HANDLER_CONTEXT not in store
        for kind in (ArtifactKind.GQL_SCHEMA, ArtifactKind.DB_SCHEMA, ArtifactKind.MIGRATED_DB):
            assert store.get(kind).version == before[kind]

        # Fixing the file recovers without touching the schema chain
        write_config(project / "livebuild.config.json")
        report = orchestrator.handle_settle(InputKind.CONFIG_FILE)
        assert report.ok
        assert set(report.rebuilt) == {ArtifactKind.PARSED_CONFIG, ArtifactKind.HANDLER_CONTEXT}
        assert store.get(ArtifactKind.DB_SCHEMA).version == before[ArtifactKind.DB_SCHEMA]

    def test_failed_migration_is_retried_on_next_edit(self, project, orchestrator, migrator):
        migrator.fail = True
        report = orchestrator.bootstrap()
        assert report.failures[ArtifactKind.MIGRATED_DB].code == FailureCode.DB_ERROR
        store = orchestrator.store
        assert ArtifactKind.DB_SCHEMA in store
        assert ArtifactKind.MIGRATED_DB not in store
        assert ArtifactKind.HANDLER_CONTEXT not in store

        migrator.fail = False
        (project / "schema.graphql").write_text(
            "type A {\n  id: ID!\n  name: String\n  note: String\n}\n"
        )
        report = orchestrator.handle_settle(InputKind.SCHEMA_FILE)
        assert report.ok
        assert migrator.calls == 2
        assert ArtifactKind.MIGRATED_DB in store
        assert ArtifactKind.HANDLER_CONTEXT in store

    def test_listeners_receive_reports(self, orchestrator):
        seen = []
        orchestrator.listeners.append(seen.append)
        report = orchestrator.bootstrap()
        assert seen == [report]


def simple_detector(tmp_path):
    path = tmp_path / "schema.graphql"
    path.write_text("v1")
    return path, ChangeDetector({InputKind.SCHEMA_FILE: path})


class TestStepFailures:
    def test_unexpected_exception_is_build_error(self, tmp_path):
        def explode(values):
            raise KeyError("missing")

        _, detector = simple_detector(tmp_path)
        graph = ArtifactGraph([DerivationRule(ArtifactKind.PARSED_SCHEMA, (InputKind.SCHEMA_FILE,), explode)])
        report = Orchestrator(graph, detector).bootstrap()
        failure = report.failures[ArtifactKind.PARSED_SCHEMA]
        assert failure.code == FailureCode.BUILD_ERROR
        assert failure.step == "explode"
        assert "KeyError" in failure.message

    def test_effect_failure_keeps_artifact(self, tmp_path):
        def parse(values):
            return values[InputKind.SCHEMA_FILE].decode()

        def broken(value, values):
            raise OSError("disk full")

        written = []
        rule = DerivationRule(
            ArtifactKind.PARSED_SCHEMA,
            (InputKind.SCHEMA_FILE,),
            parse,
            (Effect("write", broken), Effect("record", lambda value, _: written.append(value))),
        )
        _, detector = simple_detector(tmp_path)
        orch = Orchestrator(ArtifactGraph([rule]), detector)
        report = orch.bootstrap()
        assert report.rebuilt == [ArtifactKind.PARSED_SCHEMA]
        assert "write" in report.effect_failures
        assert written == ["v1"]
        assert orch.store.value(ArtifactKind.PARSED_SCHEMA) == "v1"


class TestConcurrency:
    def test_siblings_run_concurrently(self, tmp_path):
        """Artifacts in the same level are derived in parallel."""
        barrier = threading.Barrier(2, timeout=5)

        def parse(values):
            return values[InputKind.SCHEMA_FILE]

        def left(values):
            barrier.wait()
            return "left"

        def right(values):
            barrier.wait()
            return "right"

        rules = [
            DerivationRule(ArtifactKind.PARSED_SCHEMA, (InputKind.SCHEMA_FILE,), parse),
            DerivationRule(ArtifactKind.GQL_SCHEMA, (ArtifactKind.PARSED_SCHEMA,), left),
            DerivationRule(ArtifactKind.DB_SCHEMA, (ArtifactKind.PARSED_SCHEMA,), right),
        ]
        _, detector = simple_detector(tmp_path)
        orch = Orchestrator(ArtifactGraph(rules), detector, max_workers=2)
        try:
            report = orch.bootstrap()
        finally:
            orch.close()
        assert report.ok
        assert orch.store.value(ArtifactKind.GQL_SCHEMA) == "left"
        assert orch.store.value(ArtifactKind.DB_SCHEMA) == "right"

    def test_signals_during_chain_are_coalesced(self, tmp_path):
        """Two signals during an in-flight chain cause exactly one more chain."""
        entered = threading.Event()
        release = threading.Event()
        seen = []

        def parse(values):
            content = values[InputKind.SCHEMA_FILE]
            seen.append(content)
            if len(seen) == 1:
                entered.set()
                assert release.wait(5)
            return content

        path, detector = simple_detector(tmp_path)
        orch = Orchestrator(
            ArtifactGraph([DerivationRule(ArtifactKind.PARSED_SCHEMA, (InputKind.SCHEMA_FILE,), parse)]),
            detector,
        )
        reports = []
        worker = threading.Thread(target=lambda: reports.append(orch.handle_settle(InputKind.SCHEMA_FILE)))
        worker.start()
        assert entered.wait(5)
        assert orch.busy

        path.write_text("v2")
        assert orch.handle_settle(InputKind.SCHEMA_FILE) is None
        path.write_text("v3")
        assert orch.handle_settle(InputKind.SCHEMA_FILE) is None

        release.set()
        worker.join(5)
        assert orch.wait_idle(5)
        assert not orch.busy
        assert orch.chains_run == 2
        assert seen == [b"v1", b"v3"]
        assert reports[0].rebuilt == [ArtifactKind.PARSED_SCHEMA]
        assert orch.store.value(ArtifactKind.PARSED_SCHEMA) == b"v3"


class BlockingTwoInputs:
    """Config and schema rules; the first config derivation blocks until released."""

    def __init__(self, tmp_path, fingerprinters=None):
        self.config_path = tmp_path / "config.json"
        self.schema_path = tmp_path / "schema.graphql"
        self.config_path.write_text("c1")
        self.schema_path.write_text("s1")
        self.entered = threading.Event()
        self.release = threading.Event()
        self.derived = []
        self.reports = []

        rules = [
            DerivationRule(ArtifactKind.PARSED_CONFIG, (InputKind.CONFIG_FILE,), self.parse_config),
            DerivationRule(ArtifactKind.PARSED_SCHEMA, (InputKind.SCHEMA_FILE,), self.parse_schema),
        ]
        detector = ChangeDetector(
            {InputKind.CONFIG_FILE: self.config_path, InputKind.SCHEMA_FILE: self.schema_path},
            fingerprinters=fingerprinters,
        )
        self.orch = Orchestrator(ArtifactGraph(rules), detector, listeners=[self.reports.append])

    def parse_config(self, values):
        content = values[InputKind.CONFIG_FILE]
        self.derived.append(("config", content))
        if len(self.derived) == 1:
            self.entered.set()
            assert self.release.wait(5)
        return content

    def parse_schema(self, values):
        content = values[InputKind.SCHEMA_FILE]
        self.derived.append(("schema", content))
        return content

    def start_config_chain(self):
        worker = threading.Thread(target=self.orch.handle_settle, args=(InputKind.CONFIG_FILE,))
        worker.start()
        assert self.entered.wait(5)
        return worker

    def finish(self, worker):
        self.release.set()
        worker.join(5)
        assert self.orch.wait_idle(5)
        assert not self.orch.busy


class TestQueuedChains:
    def test_queued_inputs_run_in_arrival_order(self, tmp_path):
        """Signals for different inputs queued behind a chain run first-come first-served."""
        setup = BlockingTwoInputs(tmp_path)
        worker = setup.start_config_chain()

        assert setup.orch.handle_settle(InputKind.SCHEMA_FILE) is None
        setup.config_path.write_text("c2")
        assert setup.orch.handle_settle(InputKind.CONFIG_FILE) is None

        setup.finish(worker)
        assert setup.derived == [("config", b"c1"), ("schema", b"s1"), ("config", b"c2")]
        assert [r.inputs for r in setup.reports] == [
            (InputKind.CONFIG_FILE,),
            (InputKind.SCHEMA_FILE,),
            (InputKind.CONFIG_FILE,),
        ]

    def test_raising_chain_does_not_drop_queued_signals(self, tmp_path):
        """A chain that raises is reported and the next queued signal still runs."""
        def fingerprint(raw):
            if raw.startswith(b"boom"):
                raise RuntimeError("fingerprinter crashed")
            return hash_bytes(raw)

        setup = BlockingTwoInputs(tmp_path, fingerprinters={InputKind.CONFIG_FILE: fingerprint})
        worker = setup.start_config_chain()

        setup.config_path.write_text("boom")
        assert setup.orch.handle_settle(InputKind.CONFIG_FILE) is None
        setup.schema_path.write_text("s2")
        assert setup.orch.handle_settle(InputKind.SCHEMA_FILE) is None

        setup.finish(worker)
        orch = setup.orch
        assert orch.store.value(ArtifactKind.PARSED_SCHEMA) == b"s2"
        assert orch.store.value(ArtifactKind.PARSED_CONFIG) == b"c1"
        failed = setup.reports[1]
        assert failed.inputs == (InputKind.CONFIG_FILE,)
        assert "fingerprinter crashed" in failed.error
        assert not failed.ok
        assert setup.reports[2].rebuilt == [ArtifactKind.PARSED_SCHEMA]

    @pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"), reason="no integer string limit")
    def test_oversized_integer_config_is_a_parse_error(self, project, orchestrator):
        """Config content json cannot load is reported, not raised."""
        orchestrator.bootstrap()
        (project / "livebuild.config.json").write_text(
            '{"options": {"max_healthcheck_duration": ' + "1" * 5000 + "}}"
        )
        report = orchestrator.handle_settle(InputKind.CONFIG_FILE)
        assert report.error is None
        assert report.changed
        assert report.failures[ArtifactKind.PARSED_CONFIG].code == FailureCode.PARSE_ERROR
        assert ArtifactKind.GQL_SCHEMA in orchestrator.store
