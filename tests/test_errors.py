"""Tests for perch.errors — exception hierarchy and HTTP error bodies."""

import pytest

from perch.errors import (
    BadRequest,
    ConfigurationError,
    HTTPError,
    InternalServerError,
    InvalidCollectionName,
    ManifestError,
    NotAcceptable,
    NotFound,
    NotImplementedRoute,
    PerchError,
    RoutingError,
    http_error,
)


class TestHierarchy:
    def test_routing_error_is_configuration_error(self) -> None:
        assert issubclass(RoutingError, ConfigurationError)
        assert issubclass(ConfigurationError, PerchError)

    def test_invalid_name_is_manifest_error(self) -> None:
        assert issubclass(InvalidCollectionName, ManifestError)

    @pytest.mark.parametrize(
        ("cls", "status"),
        [
            (BadRequest, 400),
            (NotFound, 404),
            (NotAcceptable, 406),
            (InternalServerError, 500),
            (NotImplementedRoute, 501),
        ],
    )
    def test_status(self, cls: type[HTTPError], status: int) -> None:
        error = cls()
        assert error.status == status
        assert isinstance(error, HTTPError)
        assert isinstance(error, PerchError)


class TestHTTPError:
    def test_name_from_status_phrase(self) -> None:
        assert NotFound().name == "NotFound"
        assert InternalServerError().name == "InternalServerError"
        assert NotImplementedRoute().name == "NotImplemented"

    def test_message_defaults_to_phrase(self) -> None:
        assert HTTPError(status=404).message == "Not Found"

    def test_message_uses_detail(self) -> None:
        assert NotFound("No widget 7").message == "No widget 7"

    def test_str(self) -> None:
        assert str(NotFound("No widget 7")) == "404: No widget 7"
        assert str(HTTPError(status=418)) == "418"

    def test_to_dict(self) -> None:
        body = NotFound("No widget 7", code="widgetMissing").to_dict()
        assert body == {
            "name": "NotFound",
            "status": 404,
            "message": "No widget 7",
            "code": "widgetMissing",
        }

    def test_to_dict_code_defaults_to_name(self) -> None:
        assert BadRequest("bad").to_dict()["code"] == "BadRequest"

    def test_can_be_raised_and_caught(self) -> None:
        with pytest.raises(HTTPError) as info:
            raise NotAcceptable("nope")
        assert info.value.status == 406


class TestHttpErrorHelper:
    def test_builds_any_error_status(self) -> None:
        error = http_error(409, "Already exists", code="conflict")
        assert error.status == 409
        assert error.name == "Conflict"
        assert error.code == "conflict"

    @pytest.mark.parametrize("status", [200, 302, 600])
    def test_rejects_non_error_status(self, status: int) -> None:
        with pytest.raises(ValueError, match="4xx or 5xx"):
            http_error(status)
