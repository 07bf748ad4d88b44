"""
Provider orchestration: primary, optional fallback, deterministic floor.

Generation is a chain-of-responsibility walk over
``[primary, fallback, deterministic]``. The walk always ends in text because
the deterministic floor cannot fail. A generator that fails stays out of
that role's chain until an explicit mode switch.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from ..config import AIChatConfig
from ..config_constants import HostedProvider, LocalBackend
from ..infrastructure.llm_client import LLMClient
from ..infrastructure.local_llm_client import LocalLLMClient
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.base_enums import AIMode, ProviderKind, ProviderRole
from ..domain.errors import BadRequestError, ProviderError
from ..domain.generation import GenerationOptions, GenerationOutcome, TextGenerator
from ..domain.responses import AIStatusResponse, ProviderStatus
from .text_generators import DeterministicGenerator, HostedAPIGenerator, LocalInferenceGenerator


logger = get_module_logger()


@dataclass
class FallbackState:
    """
    Which generators make up the chain, and who answered last per role.

    ``primary`` is None in demo mode; ``fallback`` is only ever the
    other network variant. A network generator that fails for a role is
    recorded in ``failed`` and skipped for that role until the next mode
    switch builds a fresh state.
    """

    deterministic: TextGenerator
    primary: Optional[TextGenerator] = None
    fallback: Optional[TextGenerator] = None
    active: Dict[ProviderRole, ProviderKind] = field(default_factory=dict)
    failed: Dict[ProviderRole, Set[ProviderKind]] = field(default_factory=dict)

    def chain(self, role: Optional[ProviderRole] = None) -> List[TextGenerator]:
        """Configured chain; with ``role``, generators failed for it are left out."""
        skipped = self.failed.get(role, set()) if role is not None else set()
        chain = [g for g in (self.primary, self.fallback) if g is not None and g.kind not in skipped]
        chain.append(self.deterministic)
        return chain

    def network(self, role: ProviderRole) -> List[TextGenerator]:
        return [g for g in self.chain(role) if g.kind != ProviderKind.DETERMINISTIC]

    def mark_failed(self, role: ProviderRole, kind: ProviderKind) -> None:
        self.failed.setdefault(role, set()).add(kind)

    @property
    def mode(self) -> AIMode:
        if self.primary is None:
            return AIMode.DEMO
        if self.primary.kind == ProviderKind.HOSTED_API:
            return AIMode.EXTERNAL
        return AIMode.LOCAL


class ProviderOrchestrator:
    """
    Owns the FallbackState and runs generation calls against it.

    Usage:
        orchestrator = ProviderOrchestrator(config.ai_chat, hosted_client, local_client)
        outcome = await orchestrator.generate(prompt, GenerationOptions.for_sql(question))
        outcome.provider  # ProviderKind that actually answered
    """

    def __init__(
        self,
        config: AIChatConfig,
        hosted_client: Optional[LLMClient] = None,
        local_client: Optional[LocalLLMClient] = None,
        deterministic: Optional[TextGenerator] = None
    ):
        self.config = config
        # Templates; every generator in the chain gets its own clone
        self._hosted_client = hosted_client
        self._local_client = local_client
        self.state = self._initial_state(deterministic or DeterministicGenerator())

        logger.info(
            "ProviderOrchestrator initialized",
            mode=self.state.mode.value,
            primary=self.state.primary.kind.value if self.state.primary else None,
            fallback=self.state.fallback.kind.value if self.state.fallback else None
        )

    # ------------------------------------------------------------------
    # Chain construction
    # ------------------------------------------------------------------

    def _hosted(self, provider: Optional[HostedProvider] = None, model: Optional[str] = None) -> Optional[TextGenerator]:
        if self._hosted_client is None:
            return None
        return HostedAPIGenerator(self._hosted_client.with_options(provider=provider, model=model))

    def _local(self, backend: Optional[LocalBackend] = None, model: Optional[str] = None) -> Optional[TextGenerator]:
        if self._local_client is None:
            return None
        return LocalInferenceGenerator(self._local_client.with_options(backend=backend, model=model))

    def _fallback_for(self, primary_kind: ProviderKind) -> Optional[TextGenerator]:
        if not self.config.fallback_enabled:
            return None
        if primary_kind == ProviderKind.HOSTED_API and self.config.fallback_to_local and self.config.use_local_llm:
            return self._local()
        if primary_kind == ProviderKind.LOCAL_INFERENCE and self.config.fallback_to_external:
            if self._hosted_client is not None and self._hosted_client.has_api_key:
                return self._hosted()
        return None

    def _initial_state(self, deterministic: TextGenerator) -> FallbackState:
        primary: Optional[TextGenerator] = None
        if not self.config.demo_mode:
            if self.config.use_external_api:
                primary = self._hosted()
            elif self.config.use_local_llm:
                primary = self._local()

        fallback = self._fallback_for(primary.kind) if primary else None
        start = primary.kind if primary else ProviderKind.DETERMINISTIC
        return FallbackState(
            deterministic=deterministic,
            primary=primary,
            fallback=fallback,
            active={ProviderRole.GENERATION: start, ProviderRole.FORMATTING: start},
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _walk(
        self,
        state: FallbackState,
        prompt: str,
        options: GenerationOptions,
        role: ProviderRole,
        attempted: List[ProviderKind],
        failures: Dict[str, str]
    ) -> Optional[GenerationOutcome]:
        trace_id = current_trace_id()
        for generator in state.network(role):
            attempted.append(generator.kind)
            try:
                text = await generator.generate(prompt, options)
            except ProviderError as e:
                failures[generator.kind.value] = e.error_code
                state.mark_failed(role, generator.kind)
                logger.warning(
                    "Provider failed, moving down the chain",
                    provider=generator.kind.value,
                    role=role.value,
                    error_code=e.error_code,
                    error=e.message,
                    trace_id=trace_id
                )
                continue
            except Exception as e:
                failures[generator.kind.value] = type(e).__name__
                state.mark_failed(role, generator.kind)
                logger.error(
                    "Provider raised unexpected error, moving down the chain",
                    provider=generator.kind.value,
                    role=role.value,
                    error=str(e),
                    error_type=type(e).__name__,
                    trace_id=trace_id
                )
                continue

            state.active[role] = generator.kind
            return GenerationOutcome(
                text=text,
                provider=generator.kind,
                attempted=list(attempted),
                failures=dict(failures),
            )
        return None

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions,
        role: ProviderRole = ProviderRole.GENERATION,
        floor: Optional[Callable[[], str]] = None
    ) -> GenerationOutcome:
        """
        Walk the chain until a generator answers. Never raises.

        A generator that fails is dropped from this role's chain for the
        rest of the process; only ``switch_mode`` brings it back.

        Args:
            prompt: Full prompt text
            options: Sampling options and the original question
            role: Generation or formatting; tracked separately in status
            floor: Replaces the deterministic generator as the last step
                (the formatter passes its templated summary)
        """
        state = self.state
        attempted: List[ProviderKind] = []
        failures: Dict[str, str] = {}

        outcome = await self._walk(state, prompt, options, role, attempted, failures)
        if outcome is not None:
            return outcome

        attempted.append(ProviderKind.DETERMINISTIC)
        if floor is not None:
            text = floor()
        else:
            text = await state.deterministic.generate(prompt, options)
        state.active[role] = ProviderKind.DETERMINISTIC

        logger.info(
            "Deterministic floor answered",
            role=role.value,
            attempted=[k.value for k in attempted],
            trace_id=current_trace_id()
        )
        return GenerationOutcome(
            text=text,
            provider=ProviderKind.DETERMINISTIC,
            attempted=attempted,
            failures=failures,
        )

    async def try_generate(
        self,
        prompt: str,
        options: GenerationOptions,
        role: ProviderRole = ProviderRole.GENERATION
    ) -> Optional[GenerationOutcome]:
        """Like ``generate`` without the floor; None when no network provider answered."""
        state = self.state
        if not state.network(role):
            return None
        return await self._walk(state, prompt, options, role, [], {})

    # ------------------------------------------------------------------
    # Mode switching and status
    # ------------------------------------------------------------------

    async def switch_mode(
        self,
        mode: AIMode,
        provider: Optional[str] = None,
        backend: Optional[str] = None,
        model: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Change the primary/fallback designation.

        The candidate primary is probed first; on any failure the current
        state is left exactly as it was.

        Raises:
            BadRequestError: Unknown mode, provider or backend
            ProviderError: The candidate primary is not available
        """
        trace_id = current_trace_id()
        logger.info(
            "Switching AI mode",
            mode=mode.value,
            provider=provider,
            backend=backend,
            model=model,
            trace_id=trace_id
        )

        candidate: Optional[TextGenerator] = None
        options: Dict[str, Any] = {}

        if mode == AIMode.EXTERNAL:
            try:
                hosted_provider = HostedProvider(provider) if provider else None
            except ValueError as e:
                raise BadRequestError(
                    f"Unsupported provider '{provider}'",
                    details={"supported": [p.value for p in HostedProvider]}
                ) from e
            candidate = self._hosted(hosted_provider, model)
            if candidate is None:
                raise ProviderError("Hosted API is not configured")

        elif mode == AIMode.LOCAL:
            try:
                local_backend = LocalBackend(backend) if backend else None
            except ValueError as e:
                raise BadRequestError(
                    f"Unsupported backend '{backend}'",
                    details={"supported": [b.value for b in LocalBackend]}
                ) from e
            candidate = self._local(local_backend, model)
            if candidate is None:
                raise ProviderError("Local inference is not configured")

        elif mode != AIMode.DEMO:
            raise BadRequestError(f"Unsupported mode '{mode}'")

        if candidate is not None:
            if not await candidate.check_available():
                await candidate.close()
                logger.warning("Mode switch rejected, provider unavailable", mode=mode.value, trace_id=trace_id)
                raise ProviderError(
                    f"Cannot switch to {mode.value} mode: provider is not available",
                    details=candidate.describe()
                )
            options = candidate.describe()

        fallback = self._fallback_for(candidate.kind) if candidate else None
        start = candidate.kind if candidate else ProviderKind.DETERMINISTIC
        previous = self.state
        self.state = FallbackState(
            deterministic=previous.deterministic,
            primary=candidate,
            fallback=fallback,
            active={ProviderRole.GENERATION: start, ProviderRole.FORMATTING: start},
        )

        for generator in (previous.primary, previous.fallback):
            if generator is not None:
                await generator.close()

        logger.info("AI mode switched", mode=mode.value, trace_id=trace_id)
        return {"mode": mode.value, "options": options}

    async def status(self) -> AIStatusResponse:
        state = self.state
        providers: List[ProviderStatus] = []
        for generator in state.chain():
            available = await generator.check_available()
            providers.append(ProviderStatus(kind=generator.kind, available=available, details=generator.describe()))

        return AIStatusResponse(
            configuration={
                "mode": state.mode.value,
                "use_external_api": self.config.use_external_api,
                "use_local_llm": self.config.use_local_llm,
                "demo_mode": self.config.demo_mode,
                "fallback_enabled": self.config.fallback_enabled,
                "fallback_to_local": self.config.fallback_to_local,
                "fallback_to_external": self.config.fallback_to_external,
                "failed": {
                    role.value: sorted(kind.value for kind in kinds)
                    for role, kinds in state.failed.items()
                },
            },
            primary=state.primary.kind if state.primary else None,
            fallback=state.fallback.kind if state.fallback else None,
            active_generation=state.active.get(ProviderRole.GENERATION, ProviderKind.DETERMINISTIC),
            active_formatting=state.active.get(ProviderRole.FORMATTING, ProviderKind.DETERMINISTIC),
            providers=providers,
        )

    async def close(self) -> None:
        for generator in (self.state.primary, self.state.fallback):
            if generator is not None:
                await generator.close()
