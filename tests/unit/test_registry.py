"""Unit tests for the handler registry."""
import pytest


class TestHandlerRegistry:
    def test_built_registry_covers_every_job_type(self):
        from app.models.jobs import JobType
        from app.services.jobs.handlers import build_registry

        registry = build_registry()
        assert registry.missing() == []
        for job_type in JobType:
            assert job_type in registry

    def test_validate_names_missing_types(self):
        from app.models.jobs import JobType
        from app.services.jobs.dispatcher import HandlerRegistry

        registry = HandlerRegistry()
        registry.register(JobType.GENERATE_CONTENT, lambda ctx: None)
        with pytest.raises(RuntimeError, match="onboard_agent"):
            registry.validate()

    def test_decorator_registration(self):
        from app.models.jobs import JobType
        from app.services.jobs.dispatcher import HandlerRegistry

        registry = HandlerRegistry()

        @registry.register(JobType.CREW_INTERACTION)
        def crew(ctx):
            return {"ok": True}

        assert registry.get("crew_interaction") is crew

    def test_double_registration_rejected(self):
        from app.models.jobs import JobType
        from app.services.jobs.dispatcher import HandlerRegistry

        registry = HandlerRegistry()
        registry.register(JobType.AGENT_CYCLE, lambda ctx: None)
        with pytest.raises(ValueError):
            registry.register(JobType.AGENT_CYCLE, lambda ctx: None)

    def test_unknown_type_is_permanent(self):
        from app.services.jobs.dispatcher import HandlerRegistry
        from app.services.jobs.errors import UnknownJobTypeError, is_permanent

        registry = HandlerRegistry()
        with pytest.raises(UnknownJobTypeError) as exc_info:
            registry.get("mine_bitcoin")
        assert is_permanent(exc_info.value)
        assert "mine_bitcoin" not in registry
