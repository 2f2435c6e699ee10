"""Main Idest API client: обёртка над aiohttp."""
import asyncio
import logging
from typing import Any, Dict, Optional, Union

import aiohttp

from ..config import settings
from . import endpoints
from .exceptions import (
    AuthenticationError, DataNotFoundError, IdestAPIError,
    InvalidResponseError, NetworkError, RateLimitError,
)
from .models import (
    Assignment, GradedResult, ObjectiveResult, Page, Skill, SubmissionReceipt,
    assignment_from_payload, graded_result_from_payload, objective_result_from_payload,
    overview_from_payload, page_from_payload, receipt_from_payload,
    submission_overview_from_payload,
)

logger = logging.getLogger(__name__)


def _unwrap(payload: Any) -> Any:
    """Strips the ``{status, message, data}`` envelope when present."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class IdestClient:
    """Async client for the Idest backend."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            token: Bearer access token issued by the auth provider
            base_url: Backend root, defaults to settings.IDEST_API_BASE_URL
            timeout: Total request timeout in seconds
            session: Shared aiohttp session; created lazily when omitted
        """
        self.token = token
        self.base_url = (base_url or settings.IDEST_API_BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout or settings.API_TIMEOUT)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "IdestClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _headers(self) -> Dict[str, str]:
        headers = dict(endpoints.DEFAULT_HEADERS)
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Any = None,
    ) -> Any:
        """
        Выполняет запрос и возвращает разобранный JSON.

        Raises:
            AuthenticationError: 401/403
            DataNotFoundError: 404
            RateLimitError: 429
            NetworkError: Ошибка соединения, таймаут или 5xx
            InvalidResponseError: Ответ не является JSON
            IdestAPIError: Прочие 4xx
        """
        url = f"{self.base_url}/{path}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        session = self._get_session()
        try:
            async with session.request(
                method, url, params=params, json=json, data=data, headers=self._headers()
            ) as response:
                status = response.status
                if status in (401, 403):
                    raise AuthenticationError("Phiên đăng nhập đã hết hạn")
                if status == 404:
                    raise DataNotFoundError(f"Not found: {path}")
                if status == 429:
                    raise RateLimitError("Too many requests")
                if status >= 500:
                    raise NetworkError(f"Server error {status} on {method} {path}")
                if status >= 400:
                    body = await response.text()
                    raise IdestAPIError(f"HTTP {status} on {method} {path}: {body[:200]}")

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise InvalidResponseError(f"Invalid JSON from {path}: {e}")
        except IdestAPIError:
            raise
        except asyncio.TimeoutError:
            logger.error("Timeout on %s %s", method, url)
            raise NetworkError(f"Timeout on {method} {path}")
        except aiohttp.ClientError as e:
            logger.error("Request %s %s failed: %s", method, url, e)
            raise NetworkError(f"Request failed: {e}")

    async def get_assignment(self, skill: Skill, assignment_id: str) -> Assignment:
        """
        Получить задание.

        Args:
            skill: Навык (reading/listening/writing/speaking)
            assignment_id: ID задания

        Returns:
            Assignment

        Raises:
            DataNotFoundError: Задание не найдено
        """
        skill = Skill(skill)
        payload = await self._request("GET", endpoints.assignment_detail(skill.value, assignment_id))
        data = _unwrap(payload)
        if not data:
            raise DataNotFoundError(f"Assignment {assignment_id} not found")
        return assignment_from_payload(skill, data)

    async def submit(self, skill: Skill, payload: Dict[str, Any]) -> SubmissionReceipt:
        """
        Отправить работу.

        Reading, listening and writing go as JSON; speaking goes as multipart
        with one audio file per part.

        Returns:
            SubmissionReceipt с ID новой работы
        """
        skill = Skill(skill)
        path = endpoints.submissions(skill.value)

        if skill == Skill.SPEAKING:
            response = await self._request("POST", path, data=self._speaking_form(payload))
        else:
            response = await self._request("POST", path, json=payload)

        receipt = receipt_from_payload(response)
        logger.info("Submitted %s assignment %s as %s", skill.value, payload.get("assignment_id"), receipt.id)
        return receipt

    @staticmethod
    def _speaking_form(payload: Dict[str, Any]) -> aiohttp.FormData:
        form = aiohttp.FormData()
        for key, value in payload.items():
            if hasattr(value, "content"):
                form.add_field(key, value.content, filename=value.filename, content_type=value.mime_type)
            else:
                form.add_field(key, str(value))
        return form

    async def get_result(
        self, skill: Skill, submission_id: str
    ) -> Union[ObjectiveResult, GradedResult]:
        """
        Получить результат проверки.

        Returns:
            ObjectiveResult для reading/listening, GradedResult для writing/speaking
        """
        skill = Skill(skill)
        payload = await self._request("GET", endpoints.submission_detail(skill.value, submission_id))
        data = _unwrap(payload)
        if not data:
            raise DataNotFoundError(f"Submission {submission_id} not found")

        if skill.is_objective:
            return objective_result_from_payload(data)
        return graded_result_from_payload(skill, data)

    async def list_assignments(
        self, page: Optional[int] = None, limit: Optional[int] = None
    ) -> Dict[Skill, Page]:
        """
        Получить задания всех навыков.

        Returns:
            Словарь навык → Page
        """
        payload = await self._request("GET", endpoints.ASSIGNMENTS, params={"page": page, "limit": limit})
        if not isinstance(payload, dict):
            raise InvalidResponseError("assignment listing is not an object")

        return {
            skill: page_from_payload(
                payload.get(skill.value) or [],
                lambda item, skill=skill: overview_from_payload(skill, item),
            )
            for skill in Skill
        }

    async def list_assignments_by_skill(
        self, skill: Skill, page: Optional[int] = None, limit: Optional[int] = None
    ) -> Page:
        """Получить задания одного навыка."""
        skill = Skill(skill)
        payload = await self._request(
            "GET", endpoints.skill_assignments(skill.value), params={"page": page, "limit": limit}
        )
        # Ответ бывает как в конверте {status, data: ...}, так и без него
        if isinstance(payload, dict) and "pagination" not in payload:
            payload = payload.get("data")
        return page_from_payload(payload, lambda item: overview_from_payload(skill, item))

    async def get_my_submissions(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        skill: Optional[Skill] = None,
    ) -> Page:
        """Получить список своих работ."""
        params = {"page": page, "limit": limit, "skill": Skill(skill).value if skill else None}
        payload = await self._request("GET", endpoints.MY_SUBMISSIONS, params=params)
        return page_from_payload(payload, submission_overview_from_payload)

    async def close(self):
        """Закрыть сессию, если она создана клиентом."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
