"""Public API: the default derivation table and a watch session around it.

This module is the stable interface for embedding livebuild. The derivation
table below is the dependency graph::

    config file
        parse_config -> (contract and handler type modules)
            build_handler_context (1 / 2)
    schema file
        parse_schema
            build_gql_schema -> (schema.graphql, entity types, server restart)
            build_db_schema
                migrate_db
                build_handler_context (2 / 2) -> (context type module, reindex)
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Optional

from livebuild._internal.logging import get_logger
from livebuild.kernel.change_detector import ChangeDetector
from livebuild.kernel.debounce import Debouncer
from livebuild.kernel.graph import ArtifactGraph, DerivationRule, Effect
from livebuild.kernel.hash_utils import fingerprint_graphql_document, fingerprint_json_document
from livebuild.kernel.kinds import ArtifactKind, InputKind, Node
from livebuild.kernel.orchestrator import ChainReport, Listener, Orchestrator
from livebuild.settings import Settings
from livebuild.steps.config import ProjectConfig, parse_config
from livebuild.steps.context import HandlerContext, build_handler_context
from livebuild.steps.db import SqliteMigrator, build_db_schema
from livebuild.steps.gql import build_gql_schema
from livebuild.steps.schema import parse_schema
from livebuild.steps.server import ApiServer
from livebuild.steps.typegen import TypeGenerator
from livebuild.watcher import SourceWatcher

logger = get_logger(__name__)

ReindexHook = Callable[[HandlerContext], None]


def build_rules(
    migrator: SqliteMigrator,
    typegen: Optional[TypeGenerator] = None,
    server: Optional[ApiServer] = None,
    reindex: Optional[ReindexHook] = None,
) -> List[DerivationRule]:
    """The derivation table wired to the given collaborators.

    ``typegen`` and ``server`` are optional so that validation-only callers
    can run the pure derivations without side effects. ``reindex`` is called
    after every handler context rebuild; how already-processed events are
    reconciled with a new context is left to the hook.
    """

    def parse_config_file(values: Mapping[Node, Any]) -> ProjectConfig:
        return parse_config(values[InputKind.CONFIG_FILE])

    def parse_schema_file(values: Mapping[Node, Any]):
        return parse_schema(values[InputKind.SCHEMA_FILE])

    def gql_schema(values: Mapping[Node, Any]):
        return build_gql_schema(values[ArtifactKind.PARSED_SCHEMA])

    def db_schema(values: Mapping[Node, Any]):
        return build_db_schema(values[ArtifactKind.PARSED_SCHEMA])

    def migrate_db(values: Mapping[Node, Any]):
        return migrator.migrate(values[ArtifactKind.DB_SCHEMA])

    def handler_context(values: Mapping[Node, Any]) -> HandlerContext:
        return build_handler_context(values[ArtifactKind.PARSED_CONFIG], values[ArtifactKind.DB_SCHEMA])

    config_effects: List[Effect] = []
    gql_effects: List[Effect] = []
    context_effects: List[Effect] = []
    if typegen is not None:
        config_effects.append(Effect("generate_contract_types", lambda config, _: typegen.generate_contract_types(config)))
        config_effects.append(Effect("generate_handler_types", lambda config, _: typegen.generate_handler_types(config)))
        gql_effects.append(Effect("generate_schema", lambda schema, _: typegen.generate_schema(schema)))
        gql_effects.append(Effect("generate_entity_types", lambda schema, _: typegen.generate_entity_types(schema)))
        context_effects.append(Effect(
            "generate_context_type",
            lambda _, values: typegen.generate_context_type(
                values[ArtifactKind.PARSED_CONFIG], values[ArtifactKind.DB_SCHEMA]
            ),
        ))
    if server is not None:
        gql_effects.append(Effect("restart_server", lambda schema, _: server.restart(schema)))
    if reindex is not None:
        context_effects.append(Effect("reindex", lambda context, _: reindex(context)))

    return [
        DerivationRule(ArtifactKind.PARSED_CONFIG, (InputKind.CONFIG_FILE,), parse_config_file, tuple(config_effects)),
        DerivationRule(ArtifactKind.PARSED_SCHEMA, (InputKind.SCHEMA_FILE,), parse_schema_file),
        DerivationRule(ArtifactKind.GQL_SCHEMA, (ArtifactKind.PARSED_SCHEMA,), gql_schema, tuple(gql_effects)),
        DerivationRule(ArtifactKind.DB_SCHEMA, (ArtifactKind.PARSED_SCHEMA,), db_schema),
        DerivationRule(ArtifactKind.MIGRATED_DB, (ArtifactKind.DB_SCHEMA,), migrate_db),
        DerivationRule(
            ArtifactKind.HANDLER_CONTEXT,
            (ArtifactKind.PARSED_CONFIG, ArtifactKind.DB_SCHEMA, ArtifactKind.MIGRATED_DB),
            handler_context,
            tuple(context_effects),
        ),
    ]


def log_reindex_pending(context: HandlerContext) -> None:
    """Default reindex hook: already-processed events are not replayed."""
    logger.info(
        "reindex_not_configured",
        entities=context.entity_names,
        handlers=len(context.handler_names),
    )


def create_detector(settings: Settings) -> ChangeDetector:
    return ChangeDetector(
        paths={
            InputKind.CONFIG_FILE: settings.config_path,
            InputKind.SCHEMA_FILE: settings.schema_path,
        },
        fingerprinters={
            InputKind.CONFIG_FILE: fingerprint_json_document,
            InputKind.SCHEMA_FILE: fingerprint_graphql_document,
        },
        cache_path=settings.fingerprint_cache_path,
    )


class DevSession:
    """Bootstrap build plus continuous regeneration on file changes."""

    def __init__(
        self,
        settings: Settings,
        server: Optional[ApiServer] = None,
        reindex: Optional[ReindexHook] = None,
        listeners: Iterable[Listener] = (),
        root: Optional[Path] = None,
    ):
        self.settings = settings.resolve(root)
        self.server = server if server is not None else ApiServer()
        self.detector = create_detector(self.settings)
        self.typegen = TypeGenerator(self.settings.generated_dir)
        self.migrator = SqliteMigrator(self.settings.database_path)
        self.graph = ArtifactGraph(build_rules(
            self.migrator,
            self.typegen,
            self.server,
            reindex if reindex is not None else log_reindex_pending,
        ))
        self.orchestrator = Orchestrator(
            self.graph,
            self.detector,
            max_workers=self.settings.max_workers,
            listeners=[self._persist_fingerprints, *listeners],
        )
        self.debouncer = Debouncer(self.settings.quiet_period, self.orchestrator.handle_settle)
        self._watcher = None

    @property
    def store(self):
        return self.orchestrator.store

    def _persist_fingerprints(self, report: ChainReport) -> None:
        self.detector.save()

    def build(self) -> ChainReport:
        """Build every artifact once from the current files."""
        loaded = self.detector.hydrate()
        report = self.orchestrator.bootstrap()
        if loaded and report is not None and not report.changed:
            logger.info("inputs_unchanged_since_last_run")
        return report

    def start(self) -> ChainReport:
        """Bootstrap, then start watching the input files."""
        report = self.build()
        self._watcher = SourceWatcher(self.detector.paths, self.debouncer)
        self._watcher.start()
        return report

    def stop(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self.debouncer.close()
        self.orchestrator.wait_idle()
        self.orchestrator.close()
        self.detector.save()

    def run_forever(self, poll_interval: float = 1.0) -> None:
        """Watch until interrupted; derivation failures never end the loop."""
        self.start()
        try:
            while True:
                time.sleep(poll_interval)
        except KeyboardInterrupt:
            logger.info("interrupted")
        finally:
            self.stop()


def check(settings: Settings, root: Optional[Path] = None) -> ChainReport:
    """Run every derivation once against an in-memory database.

    Nothing is written: no generated files, no fingerprint cache, no server.
    """
    settings = settings.resolve(root)
    detector = create_detector(settings.model_copy(update={"fingerprint_cache_path": None}))

    rules = build_rules(SqliteMigrator(":memory:"))
    orchestrator = Orchestrator(ArtifactGraph(rules), detector, max_workers=settings.max_workers)
    try:
        return orchestrator.bootstrap()
    finally:
        orchestrator.close()
