"""reqrun runner - execute a request sequence, threading extracted variables forward."""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from reqrun.bodies import parse_body
from reqrun.errors import ReqrunError
from reqrun.materializer import materialize
from reqrun.models import (
    Extraction,
    RequestDefinition,
    ResolvedRequest,
    Response,
    RunConfig,
    RunReport,
    RunResult,
    RunState,
)
from reqrun.query import compile_query, extract
from reqrun.variables import VariableStore

log = logging.getLogger(__name__)

ResultSink = Callable[[RunResult], None]


class RunOrchestrator:
    """Runs request definitions strictly in order.

    Per request: Pending -> Materializing -> Dispatching -> Extracting ->
    Completed. Any error moves the run to Aborted and nothing after the
    failing request is sent. Values extracted from one response are
    visible to every later request, never to earlier ones.
    """

    def __init__(
        self,
        config: RunConfig | None,
        transport,
        parse: Callable[[bytes, str | None], Any] = parse_body,
    ):
        self.config = config or RunConfig()
        self.transport = transport
        self.parse = parse
        self.state = RunState.PENDING

    def _enter(self, state: RunState, index: int | None = None) -> None:
        self.state = state
        if index is None:
            log.debug("Run -> %s", state.value)
        else:
            log.debug("Request #%d -> %s", index, state.value)

    def validate(self, definitions: Sequence[RequestDefinition]) -> None:
        """Compile every extraction path so bad syntax fails before any request is sent."""
        for definition in definitions:
            for rule in definition.extractions:
                compile_query(rule.path)

    def run(
        self,
        definitions: Sequence[RequestDefinition],
        store: VariableStore,
        sink: ResultSink | None = None,
    ) -> RunReport:
        report = RunReport()
        self._enter(RunState.PENDING)

        try:
            self.validate(definitions)
        except ReqrunError as e:
            return self._abort(report, e, None)

        for index, definition in enumerate(definitions):
            self._enter(RunState.PENDING, index)

            self._enter(RunState.MATERIALIZING, index)
            view = store.snapshot(definition.variables)
            log.debug("Variables for %s: %s", definition.name, dict(view))
            try:
                request = materialize(definition, view)
            except ReqrunError as e:
                return self._abort(report, e, index)

            self._enter(RunState.DISPATCHING, index)
            try:
                response = self.transport.send(request)
            except ReqrunError as e:
                self._record(report, sink, index, definition, request, None, [], view, e)
                return self._abort(report, e, index)

            self._enter(RunState.EXTRACTING, index)
            extractions: list[Extraction] = []
            try:
                self._extract(definition, response, store, extractions)
            except ReqrunError as e:
                self._record(report, sink, index, definition, request, response, extractions, view, e)
                return self._abort(report, e, index)

            self._record(report, sink, index, definition, request, response, extractions, view)

        self._enter(RunState.COMPLETED)
        report.state = RunState.COMPLETED
        return report

    def _extract(
        self,
        definition: RequestDefinition,
        response: Response,
        store: VariableStore,
        extractions: list[Extraction],
    ) -> None:
        """Apply extraction rules in declared order, writing each into the store."""
        if not definition.extractions:
            return
        data = self.parse(response.body, response.content_type)
        for rule in definition.extractions:
            value = extract(data, rule.path)
            store.set(rule.variable, value)
            extractions.append(Extraction(rule.variable, rule.path, value))
            log.debug("Extracted %s from %s", rule.variable, rule.path)

    def _record(
        self,
        report: RunReport,
        sink: ResultSink | None,
        index: int,
        definition: RequestDefinition,
        request: ResolvedRequest,
        response: Response | None,
        extractions: list[Extraction],
        view,
        error: Exception | None = None,
    ) -> None:
        result = RunResult(
            index=index,
            name=definition.name,
            request=request,
            response=response,
            extractions=tuple(extractions),
            variables=view,
            error=error,
        )
        report.results.append(result)
        if sink is not None:
            sink(result)

    def _abort(self, report: RunReport, error: Exception, index: int | None) -> RunReport:
        self._enter(RunState.ABORTED)
        if index is None:
            log.warning("Run aborted before the first request: %s", error)
        else:
            log.warning("Run aborted at request #%d: %s", index, error)
        report.state = RunState.ABORTED
        report.error = error
        report.failed_index = index
        return report
