"""Tests for the cached and invalidates endpoint decorators."""

from typing import Any

import pytest
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from attendance_monitor.adapters.cache.keys import (
    CacheKeys,
    CacheTTL,
    invalidate_student_caches,
)
from attendance_monitor.adapters.frameworks.cache import cached, invalidates
from attendance_monitor.app import MonitoringServices, create_app

pytestmark = [pytest.mark.integration, pytest.mark.tier(2)]


class StudentApp:
    """A small attendance API wired to the monitoring cache."""

    def __init__(self, services: MonitoringServices) -> None:
        self.calls: list[str] = []
        self.fail = False
        self.app: FastAPI = create_app(services=services)
        cache = services.cache
        router = APIRouter(prefix="/api/attendance")

        @router.get("/summary/student/{student_id}")
        @cached(
            cache,
            key=lambda r: CacheKeys.student_summary(r.param("student_id")),
            ttl=CacheTTL.MEDIUM,
        )
        async def summary(student_id: str, request: Request) -> Any:
            self.calls.append(student_id)
            if self.fail:
                return JSONResponse(
                    status_code=503, content={"success": False, "error": {"code": "X"}}
                )
            return {"success": True, "data": {"student_id": student_id, "rate": 90}}

        @router.get("/class/{class_id}/students")
        @cached(
            cache,
            key=lambda r: CacheKeys.class_students(r.param("class_id")),
            condition=lambda r: r.query_params.get("fresh") != "1",
        )
        async def students(class_id: str, request: Request) -> dict:
            self.calls.append(class_id)
            return {"success": True, "data": ["s1", "s2"]}

        @router.post("/mark")
        @invalidates(cache, invalidate_student_caches)
        async def mark(request: Request) -> Any:
            if self.fail:
                return JSONResponse(status_code=409, content={"success": False})
            return {"success": True, "data": {"marked": True}}

        self.app.include_router(router)


@pytest.fixture
def student_app(services: MonitoringServices) -> StudentApp:
    return StudentApp(services)


class TestCached:
    """Tests for the cached decorator."""

    @pytest.mark.cache
    async def test_miss_then_hit(
        self, asgi_test_client, student_app: StudentApp, teacher_headers: dict
    ) -> None:
        url = "/api/attendance/summary/student/s1"
        async with asgi_test_client(student_app.app) as client:
            first = await client.get(url, headers=teacher_headers)
            second = await client.get(url, headers=teacher_headers)

        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        for response in (first, second):
            assert response.headers["X-Cache-Key"] == "student:s1:summary"
            assert response.headers["Cache-Control"] == "public, max-age=1800"
        assert "cached" not in first.json()
        assert second.json() == {
            "success": True,
            "data": {"student_id": "s1", "rate": 90},
            "cached": True,
        }
        assert student_app.calls == ["s1"]

    @pytest.mark.cache
    async def test_failed_responses_are_not_stored(
        self,
        asgi_test_client,
        student_app: StudentApp,
        services: MonitoringServices,
        teacher_headers: dict,
    ) -> None:
        student_app.fail = True
        url = "/api/attendance/summary/student/s1"
        async with asgi_test_client(student_app.app) as client:
            first = await client.get(url, headers=teacher_headers)
            second = await client.get(url, headers=teacher_headers)

        assert first.status_code == 503
        assert second.headers["X-Cache"] == "MISS"
        assert student_app.calls == ["s1", "s1"]
        assert await services.cache.get("student:s1:summary") is None

    @pytest.mark.cache
    async def test_condition_bypasses_cache(
        self, asgi_test_client, student_app: StudentApp, teacher_headers: dict
    ) -> None:
        url = "/api/attendance/class/c1/students"
        async with asgi_test_client(student_app.app) as client:
            await client.get(url, headers=teacher_headers)
            bypass = await client.get(url, params={"fresh": "1"}, headers=teacher_headers)

        assert "X-Cache" not in bypass.headers
        assert student_app.calls == ["c1", "c1"]

    @pytest.mark.cache
    def test_endpoint_without_request_parameter(self, services: MonitoringServices) -> None:
        async def endpoint(student_id: str) -> dict:
            return {}

        with pytest.raises(TypeError, match="request: Request"):
            cached(services.cache, key=lambda r: "k")(endpoint)


class TestInvalidates:
    """Tests for the invalidates decorator."""

    @pytest.mark.cache
    async def test_successful_write_invalidates(
        self,
        asgi_test_client,
        student_app: StudentApp,
        services: MonitoringServices,
        teacher_headers: dict,
    ) -> None:
        url = "/api/attendance/summary/student/s1"
        async with asgi_test_client(student_app.app) as client:
            await client.get(url, headers=teacher_headers)
            await services.cache.set("class:c1:students", ["s1"])
            await services.cache.set("class:c2:students", ["s9"])

            await client.post(
                "/api/attendance/mark",
                json={"student_id": "s1", "class_id": "c1"},
                headers=teacher_headers,
            )
            after = await client.get(url, headers=teacher_headers)

        assert after.headers["X-Cache"] == "MISS"
        assert await services.cache.get("class:c1:students") is None
        assert await services.cache.get("class:c2:students") == ["s9"]

    @pytest.mark.cache
    async def test_failed_write_keeps_cache(
        self,
        asgi_test_client,
        student_app: StudentApp,
        services: MonitoringServices,
        teacher_headers: dict,
    ) -> None:
        await services.cache.set("student:s1:summary", {"success": True, "data": {}})
        student_app.fail = True

        async with asgi_test_client(student_app.app) as client:
            response = await client.post(
                "/api/attendance/mark", json={"student_id": "s1"}, headers=teacher_headers
            )

        assert response.status_code == 409
        assert await services.cache.exists("student:s1:summary")
