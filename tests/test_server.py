import os
from pathlib import Path

import httpx
import pytest
import yaml
from fastapi.testclient import TestClient

from src.content_blocker.config import ConfigLoader
from src.content_blocker.config.schema import Config
from src.content_blocker.server import BlockerServer, create_app, parse_listen
from src.content_blocker.settings import SettingsStore


class _FakeLoader:
    def __init__(self, cfg: Config):
        self._cfg = cfg
        self.config_path = Path("config/content_blocker.yaml")

    def get_config(self) -> Config:
        return self._cfg

    def stop_hot_reload(self) -> None:
        pass


@pytest.fixture
def client(tmp_path):
    cfg = Config(settings={"path": str(tmp_path / "settings.yaml")})
    return TestClient(create_app(_FakeLoader(cfg)))


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_combine_strips_tagged_content(client):
    resp = client.post(
        "/v1/prompts/combine",
        json={"prompt_bits": ["a<content>x</content>b", "c"]},
    )
    assert resp.status_code == 200
    assert resp.json() == {"prompt_bits": ["ab", "c"]}


def test_exemption_round_trip(client):
    client.post("/v1/prompts/combine", json={"prompt_bits": ["<content>x</content>", "y"]})

    resp = client.put("/v1/prompts/0/exempt", json={"exempt": True})
    assert resp.json() == {"index": 0, "exempt": True, "changed": True}

    prompts = client.get("/v1/prompts").json()
    assert [p["exempt"] for p in prompts] == [True, False]

    resp = client.post(
        "/v1/prompts/combine", json={"prompt_bits": ["<content>x</content>", "y"]}
    )
    assert resp.json()["prompt_bits"] == ["<content>x</content>", "y"]


def test_negative_exemption_index_is_rejected(client):
    resp = client.put("/v1/prompts/-1/exempt", json={"exempt": True})
    assert resp.status_code == 400


def test_preview_formats(client):
    client.post("/v1/prompts/combine", json={"prompt_bits": ["a<content>x</content>"]})

    data = client.get("/v1/preview").json()
    assert data[0]["spans"][0]["status"] == "removed"

    markup = client.get("/v1/preview", params={"format": "markup"}).json()
    assert markup[0]["markup"] == (
        'a<span class="content-blocker-blocked">&lt;content&gt;x&lt;/content&gt;</span>'
    )

    assert client.get("/v1/preview", params={"format": "xml"}).status_code == 422


def test_settings_patch_changes_filter(client):
    resp = client.patch("/v1/settings", json={"start_tag": "[[", "end_tag": "]]"})
    assert resp.status_code == 200
    assert resp.json() == {
        "enabled": True,
        "start_tag": "[[",
        "end_tag": "]]",
        "whitelisted_prompts": [],
    }

    resp = client.post("/v1/prompts/combine", json={"prompt_bits": ["a[[b]]c"]})
    assert resp.json()["prompt_bits"] == ["ac"]

    client.patch("/v1/settings", json={"enabled": False})
    resp = client.post("/v1/prompts/combine", json={"prompt_bits": ["a[[b]]c"]})
    assert resp.json()["prompt_bits"] == ["a[[b]]c"]


def test_commands_endpoint(client):
    resp = client.post("/v1/commands", json={"command": "/toggleblocker"})
    assert resp.json() == {
        "ok": True,
        "level": "success",
        "message": "Content blocker disabled",
    }

    resp = client.post("/v1/commands", json={"command": "/blockcontent"})
    assert resp.json()["level"] == "warning"


def test_settings_persist_between_apps(tmp_path):
    cfg = Config(settings={"path": str(tmp_path / "settings.yaml")})
    TestClient(create_app(_FakeLoader(cfg))).put(
        "/v1/prompts/2/exempt", json={"exempt": True}
    )

    store = SettingsStore(tmp_path / "settings.yaml")
    assert store.load().whitelisted_prompts == [2]


@pytest.mark.asyncio
async def test_combine_with_async_client(tmp_path):
    cfg = Config(settings={"path": str(tmp_path / "settings.yaml")})
    app = create_app(_FakeLoader(cfg))

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.post(
            "/v1/prompts/combine",
            json={"prompt_bits": ["<content>one\ntwo</content>three"]},
        )

    assert resp.status_code == 200
    assert resp.json()["prompt_bits"] == ["three"]


@pytest.mark.parametrize(
    ("listen", "expected"),
    [
        ("0.0.0.0:9999", ("0.0.0.0", 9999)),
        ("localhost", ("localhost", 8790)),
        ("localhost:http", ("localhost", 8790)),
        (":8080", ("127.0.0.1", 8080)),
    ],
)
def test_parse_listen(listen, expected):
    assert parse_listen(listen) == expected


def test_config_reload_switches_settings_store(tmp_path):
    config_path = tmp_path / "blocker.yaml"
    first_settings = tmp_path / "first.yaml"
    second_settings = tmp_path / "second.yaml"
    config_path.write_text(yaml.dump({"settings": {"path": str(first_settings)}}))

    loader = ConfigLoader(config_path)
    server = BlockerServer(loader)
    client = TestClient(server.app)

    config_path.write_text(
        yaml.dump(
            {
                "settings": {"path": str(second_settings)},
                "defaults": {"start_tag": "[[", "end_tag": "]]"},
            }
        )
    )
    future = os.path.getmtime(config_path) + 10
    os.utime(config_path, (future, future))
    loader.reload()

    assert server.store.path == second_settings
    assert second_settings.exists()
    assert server.config.defaults.start_tag == "[["

    resp = client.post("/v1/prompts/combine", json={"prompt_bits": ["a[[b]]c"]})
    assert resp.json()["prompt_bits"] == ["ac"]
    assert client.get("/v1/settings").json()["start_tag"] == "[["

    result = client.post("/v1/commands", json={"command": "/toggleblocker"}).json()
    assert result["message"] == "Content blocker disabled"
    assert SettingsStore(second_settings).load().enabled is False
    assert SettingsStore(first_settings).load().enabled is True
