import docker
import pytest

from streambuild.config import EngineConfig
from streambuild.engine import EngineClient


def test_build_passes_options_through(mocker):
    api = mocker.Mock()
    api.build.return_value = iter([b"{}"])
    context = iter([b"tar"])

    output = EngineClient(api).build(context, {"tag": "app", "buildargs": {"A": "1"}})

    assert list(output) == [b"{}"]
    api.build.assert_called_once_with(
        fileobj=context, custom_context=True, decode=False, tag="app", buildargs={"A": "1"}
    )


def test_create_from_docker_clients(mocker):
    api = mocker.Mock(spec=docker.APIClient)
    assert EngineClient.create(api).api is api

    client = mocker.Mock(spec=docker.DockerClient)
    client.api = api
    assert EngineClient.create(client).api is api

    engine = EngineClient(api)
    assert EngineClient.create(engine) is engine


def test_create_from_config(mocker):
    create = mocker.patch.object(EngineConfig, "create_api_client")
    assert EngineClient.create(EngineConfig(base_url="unix://x.sock")).api is create.return_value


def test_create_rejects_unknown_engines():
    with pytest.raises(TypeError):
        EngineClient.create("unix:///var/run/docker.sock")


def test_build_keeps_the_response_for_closing():
    class Response:
        closed = False

        def close(self):
            self.closed = True

    response = Response()

    class API:
        def __init__(self):
            self.hooks = {"response": []}

        def build(self, fileobj=None, **kwargs):
            for hook in self.hooks["response"]:
                hook(response)
            return iter([b"{}"])

    api = API()
    client = EngineClient(api)
    build = client.build(iter([]), {})

    assert build.response is response
    build.close()
    build.close()
    assert response.closed and build.closed


def test_build_without_response_closes_the_output(mocker):
    output = mocker.Mock()
    api = mocker.Mock()
    api.build.return_value = output

    build = EngineClient(api).build(iter([]), {})
    build.close()

    assert build.response is None
    output.close.assert_called_once_with()
