# ============================================================================
# CLIENT FACADE TESTS
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Tests - Configuration, services, lifecycle and heartbeat
# PURPOSE: Verify the user-facing client against in-memory fakes
# CREATED: 19 OCT 2026
# ============================================================================
"""
Client Facade Tests

Covers:
1. Configuration validation (secret, wait time, env fallback)
2. Service handles: register, decorator, declared functions, default
3. start/stop per service, active/inactive services, cluster id
4. Heartbeat pings active services and survives failures
5. Worker entry point helpers (function loading, health endpoint)

Run with:
    pytest tests/test_client.py -v
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import BaseModel

from client import FunctionDefinition, Heartbeat, TaskbridgeClient
from core.config import ClientConfig, DEFAULT_ENDPOINT
from core.errors import (
    ConfigurationError,
    InvalidName,
    NotRunning,
    RegistrationFailed,
    ServiceAlreadyStarted,
)
from infrastructure.control_plane import ApiResponse
from tests.fakes import FakeBroker, FakeControlPlane, job_message, wait_for


class NameInput(BaseModel):
    name: str


def hello(data: NameInput) -> str:
    return f"Hello {data.name}"


def make_client(control_plane=None, broker=None, **kwargs) -> TaskbridgeClient:
    return TaskbridgeClient(
        api_secret="sk_test_secret",
        control_plane=control_plane or FakeControlPlane(),
        transport_factory=(broker or FakeBroker()).transport_factory,
        **kwargs,
    )


# ============================================================================
# CONFIGURATION
# ============================================================================

class TestConfiguration:
    """Tests for ClientConfig and client construction."""

    def test_missing_secret(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ConfigurationError, match="No API secret"):
                TaskbridgeClient()

    def test_secret_from_env(self):
        with patch.dict("os.environ", {"TASKBRIDGE_API_SECRET": "sk_env"}, clear=True):
            client = TaskbridgeClient(control_plane=FakeControlPlane())

        assert client.config.api_secret == "sk_env"
        assert client.config.endpoint == DEFAULT_ENDPOINT

    def test_argument_wins_over_env(self):
        with patch.dict("os.environ", {"TASKBRIDGE_API_SECRET": "sk_env"}, clear=True):
            client = TaskbridgeClient(api_secret="sk_arg", control_plane=FakeControlPlane())

        assert client.config.api_secret == "sk_arg"

    @pytest.mark.parametrize("wait_time", [4999, 20001])
    def test_wait_time_bounds(self, wait_time):
        with pytest.raises(ConfigurationError):
            TaskbridgeClient(api_secret="sk", job_poll_wait_time=wait_time)

    @pytest.mark.parametrize("variable", [
        "TASKBRIDGE_JOB_POLL_WAIT_TIME",
        "TASKBRIDGE_HEARTBEAT_INTERVAL",
        "TASKBRIDGE_BATCH_SIZE",
        "TASKBRIDGE_STOP_TIMEOUT",
    ])
    def test_non_numeric_env_is_configuration_error(self, variable):
        env = {"TASKBRIDGE_API_SECRET": "sk_env", variable: "soon"}
        with patch.dict("os.environ", env, clear=True):
            with pytest.raises(ConfigurationError, match=variable):
                TaskbridgeClient(control_plane=FakeControlPlane())

    def test_numeric_env_is_parsed(self):
        env = {
            "TASKBRIDGE_API_SECRET": "sk_env",
            "TASKBRIDGE_JOB_POLL_WAIT_TIME": "8000",
            "TASKBRIDGE_STOP_TIMEOUT": "2.5",
        }
        with patch.dict("os.environ", env, clear=True):
            client = TaskbridgeClient(control_plane=FakeControlPlane())

        assert client.config.wait_time_seconds == 8
        assert client.config.polling.stop_timeout_seconds == 2.5

    def test_wait_time_in_seconds(self):
        config = ClientConfig(api_secret="sk", job_poll_wait_time_ms=5500)
        assert config.wait_time_seconds == 5

    def test_machine_id_generated(self):
        config = ClientConfig(api_secret="sk")
        assert config.machine_id.startswith("machine-")

    def test_secret_partial(self):
        client = make_client()
        assert client.secret_partial == "sk_t..."

    def test_config_object_with_overrides(self):
        config = ClientConfig(api_secret="sk_a", machine_id="m-1")
        client = TaskbridgeClient(
            endpoint="http://localhost:4000",
            control_plane=FakeControlPlane(),
            config=config,
        )

        assert client.config.endpoint == "http://localhost:4000"
        assert client.get_machine_id() == "m-1"


# ============================================================================
# SERVICES
# ============================================================================

class TestServices:
    """Tests for service handles and registration."""

    def test_register_on_service(self):
        client = make_client()
        service = client.service("people")
        service.register("hello", hello, NameInput, description="Says hello")

        registration = client.get_function_registry().lookup("hello")
        assert registration.service_name == "people"
        assert service.definition == {"name": "people", "functions": ["hello"]}

    def test_function_decorator(self):
        client = make_client()

        @client.default.function(schema=NameInput)
        def greet(data):
            return data.name

        assert greet(NameInput(name="x")) == "x"
        assert client.get_function_registry().lookup("greet").service_name == "default"

    def test_service_handles_are_cached(self):
        client = make_client()
        assert client.service("people") is client.service("people")
        assert client.default is client.default

    def test_invalid_service_name(self):
        client = make_client()
        with pytest.raises(InvalidName):
            client.service("not valid!")

    def test_duplicate_across_services(self):
        client = make_client()
        client.service("a").register("hello", hello, NameInput)

        with pytest.raises(Exception, match="already registered"):
            client.service("b").register("hello", hello, NameInput)

    def test_get_version(self):
        from __version__ import __version__
        assert TaskbridgeClient.get_version() == __version__


# ============================================================================
# LIFECYCLE
# ============================================================================

class TestLifecycle:
    """Tests for start/stop/close."""

    def test_start_serves_jobs_and_stops(self):
        async def run():
            control_plane = FakeControlPlane()
            broker = FakeBroker()
            client = make_client(control_plane, broker)
            service = client.service("people")
            service.register("hello", hello, NameInput)

            cluster_id = await service.start()
            active = client.active_services

            broker.send(job_message("job-1", "hello", {"name": "Ada"}))
            await wait_for(lambda: "job-1" in control_plane.results)

            await service.stop()
            inactive = client.inactive_services
            await client.close()
            return client, control_plane, cluster_id, active, inactive

        client, control_plane, cluster_id, active, inactive = asyncio.run(run())

        assert cluster_id == "cluster-1"
        assert client.cluster_id == "cluster-1"
        assert active == ["people"]
        assert inactive == ["people"]
        assert control_plane.results["job-1"]["content"] == "Hello Ada"
        assert control_plane.closed

    def test_declared_functions_registered_on_start(self):
        async def run():
            client = make_client()
            service = client.service("people", functions=[
                FunctionDefinition(name="hello", func=hello, schema=NameInput),
                {"name": "bye", "func": lambda d: "bye", "schema": {"type": "object"}},
            ])
            assert client.get_function_registry().lookup("hello") is None

            await service.start()
            names = [r.name for r in client.get_function_registry().list_by_service("people")]
            await client.close()
            return names

        assert asyncio.run(run()) == ["hello", "bye"]

    def test_start_twice_fails(self):
        async def run():
            client = make_client(broker=FakeBroker(poll_interval=3600))
            service = client.service("people")
            service.register("hello", hello, NameInput)
            await service.start()
            try:
                with pytest.raises(ServiceAlreadyStarted):
                    await service.start()
            finally:
                await client.close()

        asyncio.run(run())

    def test_register_after_start_fails(self):
        async def run():
            client = make_client(broker=FakeBroker(poll_interval=3600))
            service = client.service("people")
            service.register("hello", hello, NameInput)
            await service.start()
            try:
                with pytest.raises(ServiceAlreadyStarted):
                    service.register("late", hello, NameInput)
            finally:
                await client.close()

        asyncio.run(run())

    def test_stop_only_stops_one_service(self):
        async def run():
            client = make_client(broker=FakeBroker(poll_interval=3600))
            client.service("a").register("fa", hello, NameInput)
            client.service("b").register("fb", hello, NameInput)
            await client.service("a").start()
            await client.service("b").start()

            await client.service("a").stop()
            active = client.active_services
            await client.close()
            return active

        assert asyncio.run(run()) == ["b"]

    def test_restart_after_stop(self):
        async def run():
            control_plane = FakeControlPlane()
            client = make_client(control_plane, FakeBroker(poll_interval=3600))
            service = client.service("people")
            service.register("hello", hello, NameInput)

            await service.start()
            await service.stop()
            service.register("again", hello, NameInput)
            await service.start()
            active = client.active_services
            await client.close()
            return control_plane, active

        control_plane, active = asyncio.run(run())

        assert active == ["people"]
        assert [len(c["functions"]) for c in control_plane.machine_calls] == [1, 2]

    def test_stop_service_not_running(self):
        client = make_client()
        with pytest.raises(NotRunning):
            asyncio.run(client.service("people").stop())

    def test_failed_start_can_be_retried(self):
        async def run():
            control_plane = FakeControlPlane(registrations=[ApiResponse(401, {"error": "bad"})])
            client = make_client(control_plane, FakeBroker(poll_interval=3600))
            service = client.service("people")
            service.register("hello", hello, NameInput)

            with pytest.raises(RegistrationFailed):
                await service.start()
            assert client.agents == []

            await service.start()
            active = client.active_services
            await client.close()
            return active

        assert asyncio.run(run()) == ["people"]

    def test_async_context_manager(self):
        async def run():
            control_plane = FakeControlPlane()
            async with make_client(control_plane) as client:
                assert client.heartbeat.running
            return client, control_plane

        client, control_plane = asyncio.run(run())

        assert not client.heartbeat.running
        assert control_plane.closed


# ============================================================================
# HEARTBEAT
# ============================================================================

class TestHeartbeat:
    """Tests for Heartbeat and the client ping."""

    def test_beats_until_stopped(self):
        async def run():
            beat = AsyncMock()
            heartbeat = Heartbeat(0.01, beat)
            heartbeat.start()
            await wait_for(lambda: beat.await_count >= 3)
            await heartbeat.stop()
            count = beat.await_count
            await asyncio.sleep(0.05)
            return heartbeat, count, beat.await_count

        heartbeat, count, later = asyncio.run(run())

        assert not heartbeat.running
        assert later == count

    def test_failures_are_logged_not_raised(self):
        async def run():
            beat = AsyncMock(side_effect=ConnectionError("down"))
            heartbeat = Heartbeat(0.01, beat)
            heartbeat.start()
            await wait_for(lambda: heartbeat.failures >= 2)
            running = heartbeat.running
            await heartbeat.stop()
            return running

        assert asyncio.run(run()) is True

    def test_client_pings_active_services(self):
        async def run():
            control_plane = FakeControlPlane()
            client = make_client(
                control_plane,
                FakeBroker(poll_interval=3600),
                config=ClientConfig(api_secret="sk", heartbeat_interval_seconds=0.01),
            )
            client.service("people").register("hello", hello, NameInput)
            await client.service("people").start()
            await wait_for(lambda: ["people"] in control_plane.pings)
            await client.close()

        asyncio.run(run())


# ============================================================================
# WORKER ENTRY POINT
# ============================================================================

class TestWorkerMain:
    """Tests for worker.main helpers."""

    def test_load_example_functions(self):
        from worker import main as worker_main

        client = make_client()
        loaded = worker_main.load_functions(client, ["handlers.examples"])

        assert loaded == 1
        assert worker_main.declared_services(client) == ["examples"]
        names = [r.name for r in client.get_function_registry().list_functions()]
        assert names == ["echo", "sqrt"]

    def test_module_without_register_functions(self):
        from worker import main as worker_main

        with pytest.raises(ConfigurationError):
            worker_main.load_functions(make_client(), ["json"])

    def test_function_modules_from_env(self):
        from worker import main as worker_main

        with patch.dict("os.environ", {"TASKBRIDGE_FUNCTION_MODULES": "a.b, c"}):
            assert worker_main.function_modules_from_env() == ["a.b", "c"]
        with patch.dict("os.environ", {"TASKBRIDGE_FUNCTION_MODULES": ""}):
            assert worker_main.function_modules_from_env() == ["handlers.examples"]

    def test_health_handler_reports_agents(self):
        from worker import main as worker_main

        async def run():
            client = make_client(broker=FakeBroker(poll_interval=3600))
            worker_main.load_functions(client, ["handlers.examples"])
            await client.service("examples").start()

            with patch.object(worker_main, "_client", client):
                response = await worker_main.health_handler(MagicMock())

            await client.close()
            return response

        response = asyncio.run(run())
        body = json.loads(response.text)

        assert response.status == 200
        assert body["cluster_id"] == "cluster-1"
        assert body["services"]["examples"]["state"] == "polling"
        assert body["active_services"] == ["examples"]

    def test_example_functions_run(self):
        async def run():
            control_plane = FakeControlPlane()
            broker = FakeBroker()
            client = make_client(control_plane, broker)

            from worker.main import load_functions
            load_functions(client, ["handlers.examples"])
            await client.service("examples").start()

            broker.send(job_message("job-1", "echo", {"text": "hi"}))
            broker.send(job_message("job-2", "sqrt", {"x": 16}))
            broker.send(job_message("job-3", "sqrt", {"x": -1}))
            await wait_for(lambda: {"job-1", "job-2", "job-3"} <= set(control_plane.results))
            await client.close()
            return control_plane.results

        results = asyncio.run(run())

        assert results["job-1"]["content"] == {"echo": "hi"}
        assert results["job-2"]["content"] == {"result": 4.0}
        assert results["job-3"]["content"]["name"] == "SchemaValidationFailed"
