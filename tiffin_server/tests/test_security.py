"""
JWT 与错误响应测试
"""

import pytest

from tiffin_server.core.database import DatabaseManager
from tiffin_server.core.error_handler import ErrorHandler, create_success_response
from tiffin_server.core.exceptions import (
    AuthenticationError,
    InsufficientCreditsError,
    OrderCreationLogNotFoundError,
)
from tiffin_server.core.security import SecurityManager


class TestSecurityManager:

    def test_token_round_trip(self):
        manager = SecurityManager("secret")
        actor = manager.get_actor_from_token(manager.create_jwt_token("admin-1", "admin"))
        assert actor.user_id == "admin-1"
        assert actor.is_admin is True

    def test_expired_token(self):
        manager = SecurityManager("secret", expire_hours=-1)
        token = manager.create_jwt_token("admin-1", "admin")
        with pytest.raises(AuthenticationError, match="expired"):
            manager.decode_jwt_token(token)

    def test_wrong_secret(self):
        token = SecurityManager("secret").create_jwt_token("admin-1", "admin")
        with pytest.raises(AuthenticationError):
            SecurityManager("other").decode_jwt_token(token)


class TestErrorHandler:

    def test_not_found_maps_to_404(self):
        response = ErrorHandler.handle_application_error(OrderCreationLogNotFoundError("L1"))
        assert response.http_status == 404
        assert response.to_dict() == {
            "success": False,
            "error_code": "LOG_NOT_FOUND",
            "message": "Order creation log L1 not found",
            "details": {"log_id": "L1"},
        }

    def test_business_conflict_maps_to_409(self):
        response = ErrorHandler.handle_application_error(InsufficientCreditsError(0, 1))
        assert response.http_status == 409

    def test_success_envelope(self):
        assert create_success_response({"a": 1}) == {"success": True, "message": "OK", "data": {"a": 1}}
        assert create_success_response() == {"success": True, "message": "OK"}


class TestDatabaseUrl:

    @pytest.mark.parametrize("url", ["duckdb:///:memory:", ":memory:"])
    def test_memory_urls(self, url):
        assert DatabaseManager(url).db_path == ":memory:"

    def test_file_url_creates_parent(self, tmp_path):
        target = tmp_path / "nested" / "tiffin.duckdb"
        manager = DatabaseManager(f"duckdb://{target}")
        assert manager.db_path == str(target)
        assert target.parent.is_dir()
