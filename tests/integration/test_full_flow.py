import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from apimount.server import (
    ApiMount,
    CallRejected,
    ConfigurationError,
    HookOutcome,
    InstanceSurface,
    MappingSurface,
    MountConfig,
    MountRegistry,
    RouteConflictError,
    StaticSurface,
    api_mount_factory,
    build_app,
)


def make_mount(**shared):
    registry = MountRegistry(default=build_app)
    return api_mount_factory(MountConfig(**shared), registry=registry)


def client_for(mount, config=None):
    return TestClient(mount.server(config).app)


def call(client, path, args=None):
    return client.post(path, json={"args": [] if args is None else args})


class SomeApi:
    def test(self):
        return 222

    def name(self):
        return "some"

    def greet(self, who):
        return f"{self.name()} greets {who}"

    def _hidden(self):
        return "nope"


class MathApi:
    @staticmethod
    def double(x):
        return x * 2

    @classmethod
    def label(cls):
        return cls.__name__

    def not_static(self):
        return None


def test_exposes_plain_mapping():
    mount = make_mount()
    mount.expose_api({"foo": lambda: "foo"})

    response = call(client_for(mount), "/foo")

    assert response.status_code == 200
    assert response.json() == "foo"


def test_exposes_class_based_instance_under_namespace():
    mount = make_mount()
    mount.expose_class_based_api(InstanceSurface(SomeApi()))
    client = client_for(mount)

    response = call(client, "/some-api/test")
    assert response.status_code == 200
    assert response.json() == 222
    assert call(client, "/some-api/greet", ["you"]).json() == "some greets you"
    assert call(client, "/some-api/hidden").status_code == 404


def test_exposes_static_members():
    mount = make_mount()
    mount.expose_api(StaticSurface(MathApi))
    mount.expose_class_based_api(StaticSurface(MathApi))
    client = client_for(mount)

    assert call(client, "/double", [21]).json() == 42
    assert call(client, "/math-api/label").json() == "MathApi"
    assert call(client, "/not-static").status_code == 404


def test_rejection_with_raw_value_is_sent_verbatim():
    async def cause_error():
        raise CallRejected(66)

    mount = make_mount()
    mount.expose_api({"causeError": cause_error})

    response = call(client_for(mount), "/cause-error")

    assert response.status_code == 500
    assert response.json() == 66


def test_structured_error_shape():
    def explode():
        raise ValueError("boom")

    mount = make_mount()
    mount.expose_api({"explode": explode})

    response = call(client_for(mount), "/explode")

    assert response.status_code == 500
    body = response.json()
    assert set(body) == {"name", "message", "stack"}
    assert body["name"] == "ValueError"
    assert body["message"] == "boom"
    assert "Traceback" in body["stack"]


def test_two_exposures_share_one_launch():
    launches = []

    def launcher(config):
        launches.append(config.name)
        return build_app(config)

    registry = MountRegistry(default=launcher)
    mount = api_mount_factory(registry=registry)
    mount.expose_api({"first": lambda: 1})
    mount.expose_api({"second": lambda: 2})
    client = client_for(mount)

    assert launches == ["default_3000"]
    assert call(client, "/first").json() == 1
    assert call(client, "/second").json() == 2


def test_before_execution_can_take_over():
    invoked = []

    def before_execution(method, handler, receiver, request, response):
        response.status(201).json(request.state.args[0])
        return False

    mount = make_mount()
    mount.expose_api(
        {"customEndpoint": lambda *args: invoked.append(args)},
        MountConfig(before_execution=before_execution),
    )

    response = call(client_for(mount), "/custom-endpoint", ["custom"])

    assert response.status_code == 201
    assert response.json() == "custom"
    assert len(invoked) == 0


def test_before_response_observes_and_keeps_default_write():
    recorded = []

    def before_response(result, error, method, request, response):
        recorded.append((result, error, method))
        return True

    mount = make_mount()
    mount.expose_api({"someMethod": lambda: 888}, MountConfig(before_response=before_response))

    response = call(client_for(mount), "/some-method")

    assert recorded == [(888, False, "someMethod")]
    assert response.status_code == 200
    assert response.json() == 888


def test_before_response_can_write_its_own_response():
    def before_response(result, error, method, request, response):
        response.status(202).header("X-Method", method).json({"wrapped": result, "error": error})
        return HookOutcome.SHORT_CIRCUIT

    mount = make_mount()
    mount.expose_api({"value": lambda: 5}, MountConfig(before_response=before_response))

    response = call(client_for(mount), "/value")

    assert response.status_code == 202
    assert response.headers["x-method"] == "value"
    assert response.json() == {"wrapped": 5, "error": False}


def test_after_response_sees_outcome():
    seen = []

    def fail():
        raise CallRejected({"reason": "nope"})

    mount = make_mount(after_response=lambda result, error, method: seen.append((result, error, method)))
    mount.expose_api({"ok": lambda: "fine", "fail": fail})
    client = client_for(mount)

    call(client, "/ok")
    call(client, "/fail")

    assert seen == [("fine", False, "ok"), ({"reason": "nope"}, True, "fail")]


def test_failing_after_response_does_not_change_the_response():
    def after_response(result, error, method):
        raise RuntimeError("observer broke")

    mount = make_mount(after_response=after_response)
    mount.expose_api({"ok": lambda: "fine"})

    response = call(client_for(mount), "/ok")

    assert response.status_code == 200
    assert response.json() == "fine"


def test_call_hooks_replace_shared_hooks():
    seen = []
    mount = make_mount(before_response=lambda *args: seen.append("shared"))
    mount.expose_api({"a": lambda: 1})
    mount.expose_api({"b": lambda: 2}, MountConfig(before_response=lambda *args: seen.append("call")))
    client = client_for(mount)

    call(client, "/a")
    call(client, "/b")

    assert seen == ["shared", "call"]


def test_arguments_are_passed_in_order():
    args = [1, "two", {"three": 3}, [4], None, 5.5, True]
    mount = make_mount()
    mount.expose_api({"multipleArgs": lambda *received: list(received)})

    assert call(client_for(mount), "/multiple-args", args).json() == args


def test_missing_args_and_empty_body():
    mount = make_mount()
    mount.expose_api({"count": lambda *received: len(received)})
    client = client_for(mount)

    assert client.post("/count").json() == 0
    assert client.post("/count", json={}).json() == 0
    assert client.post("/count", json={"args": None}).json() == 0


def test_malformed_body_is_rejected_before_dispatch():
    invoked = []
    mount = make_mount(before_execution=lambda *args: invoked.append(args))
    mount.expose_api({"count": lambda *received: len(received)})
    client = client_for(mount)

    assert client.post("/count", content=b"{not json").status_code == 400
    assert client.post("/count", json={"args": "abc"}).status_code == 400
    assert invoked == []


def test_async_and_deferred_handlers():
    async def later(x):
        await asyncio.sleep(0)
        return x + 1

    def deferred():
        return asyncio.sleep(0, result="deferred")

    mount = make_mount()
    mount.expose_api({"later": later, "deferred": deferred})
    client = client_for(mount)

    assert call(client, "/later", [1]).json() == 2
    assert call(client, "/deferred").json() == "deferred"


def test_async_hooks_are_awaited():
    async def before_execution(method, handler, receiver, request, response):
        await asyncio.sleep(0)
        response.status(418).json("teapot")
        return False

    mount = make_mount(before_execution=before_execution)
    mount.expose_api({"brew": lambda: "coffee"})

    assert call(client_for(mount), "/brew").status_code == 418


def test_hook_returning_none_continues():
    mount = make_mount(before_execution=lambda *args: None)
    mount.expose_api({"run": lambda: "ran"})

    assert call(client_for(mount), "/run").json() == "ran"


def test_short_circuit_without_response_answers_empty():
    mount = make_mount(before_execution=lambda *args: False)
    mount.expose_api({"silent": lambda: "unused"})

    response = call(client_for(mount), "/silent")

    assert response.status_code == 204
    assert response.content == b""


def test_receiver_is_given_to_hooks():
    receivers = []
    api = SomeApi()
    mount = make_mount(before_execution=lambda method, handler, receiver, request, response: receivers.append(receiver))
    mount.expose_api(InstanceSurface(api))

    call(client_for(mount), "/test")

    assert receivers == [api]


def test_base_path_prefixes_routes():
    mount = make_mount(base_path="/api")
    mount.expose_api({"foo": lambda: "foo"})
    mount.expose_class_based_api(MappingSurface({"bar": lambda: "bar"}, type_name="ToolBox"))
    client = client_for(mount)

    assert call(client, "/api/foo").json() == "foo"
    assert call(client, "/api/tool-box/bar").json() == "bar"
    assert call(client, "/foo").status_code == 404


def test_separate_ports_get_separate_servers():
    mount = make_mount()
    mount.expose_api({"foo": lambda: "main"})
    mount.expose_api({"foo": lambda: "other"}, MountConfig(port=4000))

    assert sorted(mount.registry.launched_names()) == ["default_3000", "default_4000"]
    assert call(client_for(mount), "/foo").json() == "main"
    assert call(client_for(mount, MountConfig(port=4000)), "/foo").json() == "other"


def test_named_servers():
    mount = make_mount(name="admin")
    mount.expose_api({"foo": lambda: "admin"})

    assert mount.registry.launched_names() == ["admin"]
    assert call(client_for(mount), "/foo").json() == "admin"


def test_before_listen_runs_once_per_server():
    apps = []
    mount = make_mount(before_listen=apps.append)
    mount.expose_api({"a": lambda: 1})
    mount.expose_api({"b": lambda: 2})

    assert apps == [mount.server().app]


def test_duplicate_path_is_rejected_and_nothing_is_bound():
    mount = make_mount()
    mount.expose_api({"foo": lambda: "first"})

    with pytest.raises(RouteConflictError):
        mount.expose_api({"bar": lambda: "bar", "foo": lambda: "second"})

    client = client_for(mount)
    assert call(client, "/foo").json() == "first"
    assert call(client, "/bar").status_code == 404


def test_colliding_names_in_one_surface_are_rejected():
    mount = make_mount()

    with pytest.raises(RouteConflictError):
        mount.expose_api({"fooBar": lambda: 1, "foo_bar": lambda: 2})

    assert mount.registry.launched_names() == []


def test_class_based_exposure_requires_a_type_name():
    mount = make_mount()

    with pytest.raises(ConfigurationError):
        mount.expose_class_based_api({"foo": lambda: "foo"})

    assert mount.registry.launched_names() == []


SHIPPED_CONFIG = Path(__file__).resolve().parents[2] / "config" / "api_mount.yaml"


def test_shipped_config_keeps_port_keyed_names():
    mount = ApiMount(config_path=str(SHIPPED_CONFIG), registry=MountRegistry(default=build_app))

    assert mount.shared.name is None
    assert mount.shared.port is None

    mount.expose_api({"foo": lambda: "main"})
    mount.expose_api({"bar": lambda: "other"}, MountConfig(port=4000))

    assert sorted(mount.registry.launched_names()) == ["default_3000", "default_4000"]
    assert call(client_for(mount, MountConfig(port=4000)), "/bar").json() == "other"


def test_config_path_supplies_shared_config(tmp_path):
    path = tmp_path / "api_mount.yaml"
    path.write_text("api_mount:\n  name: internal\n  base_path: /rpc\n")
    mount = ApiMount(config_path=str(path), registry=MountRegistry(default=build_app))

    mount.expose_api({"foo": lambda: "foo"})

    assert mount.registry.launched_names() == ["internal"]
    assert call(client_for(mount), "/rpc/foo").json() == "foo"


def test_explicit_shared_config_skips_config_path(tmp_path):
    path = tmp_path / "api_mount.yaml"
    path.write_text("api_mount:\n  name: internal\n")
    mount = ApiMount(shared=MountConfig(port=4100), config_path=str(path), registry=MountRegistry(default=build_app))

    assert mount.resolve().name == "default_4100"
