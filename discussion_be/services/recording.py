# discussion_be/services/recording.py
"""
Cloud recording lifecycle (Agora Cloud Recording REST API).

Two recordings run per session, started and stopped independently:
  - individual: one file per participant stream
  - composite:  one mixed audio/video stream (provider mode "mix")

The {resourceId, sid} handle of each mode is stored on the session row.
Starting is idempotent: a stored handle is returned without a new
provider recording, and only one concurrent start may store its handle.
Stopping is idempotent: a null handle means "already stopped" and no
provider call is made; a successful stop clears the handle.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from discussion_be.config import settings
from discussion_be.models.sessions import DiscussionSession
from discussion_be.services.errors import RecordingProviderError, RecordingStopError, SessionNotFound

logger = logging.getLogger(__name__)

INDIVIDUAL = "individual"
COMPOSITE = "composite"
MODES = (COMPOSITE, INDIVIDUAL)

# provider path segment per mode
_PROVIDER_MODE = {INDIVIDUAL: "individual", COMPOSITE: "mix"}

# session columns holding each mode's handle
_HANDLE_COLUMNS = {
    COMPOSITE: ("cloud_recording_resource_id", "cloud_recording_sid"),
    INDIVIDUAL: ("individual_recording_resource_id", "individual_recording_sid"),
}


def _check_mode(mode: str) -> str:
    if mode not in _PROVIDER_MODE:
        raise ValueError(f"unknown recording mode: {mode!r}")
    return mode


def recorder_uid(mode: str) -> str:
    return settings.recording_composite_uid if mode == COMPOSITE else settings.recording_individual_uid


class AgoraRecordingClient:
    """Thin synchronous client for acquire/start/stop."""

    def __init__(
        self,
        app_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        customer_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.app_id = app_id or settings.agora_app_id
        customer_id = customer_id or settings.agora_customer_id or ""
        customer_secret = customer_secret or settings.agora_customer_secret or ""
        self._auth = (customer_id, customer_secret)  # HTTP Basic
        self._base = f"{(base_url or settings.agora_base_url).rstrip('/')}/v1/apps/{self.app_id}/cloud_recording"
        self._timeout = timeout or settings.http_timeout_seconds

    def _post(self, path: str, body: Dict[str, Any], error_cls=RecordingProviderError) -> Dict[str, Any]:
        url = f"{self._base}/{path}"
        try:
            res = requests.post(url, json=body, auth=self._auth, timeout=self._timeout)
        except requests.RequestException as e:
            raise error_cls(f"recording provider unreachable: {e}") from e

        try:
            data = res.json()
        except ValueError:
            data = {"raw": res.text}

        if not res.ok:
            raise error_cls(
                f"recording provider returned {res.status_code} for {path}",
                status_code=res.status_code,
                details=data,
            )
        return data

    @staticmethod
    def _storage_config(cname: str, mode: str) -> Dict[str, Any]:
        return {
            "vendor": settings.storage_vendor,
            "region": settings.storage_region,
            "bucket": settings.s3_bucket_name,
            "accessKey": settings.s3_access_key,
            "secretKey": settings.s3_secret_key,
            "fileNamePrefix": ["recordings", cname, mode],
        }

    def acquire(self, cname: str, uid: str) -> str:
        data = self._post("acquire", {
            "cname": cname,
            "uid": str(uid),
            "clientRequest": {
                "resourceExpiredHour": settings.recording_resource_expired_hour,
                "scene": 0,
            },
        })
        resource_id = data.get("resourceId")
        if not resource_id:
            raise RecordingProviderError("acquire response missing resourceId", details=data)
        return resource_id

    def start(self, resource_id: str, cname: str, uid: str, mode: str, token: Optional[str] = None) -> str:
        _check_mode(mode)
        if mode == INDIVIDUAL:
            recording_config = {
                "maxIdleTime": settings.recording_max_idle_time,
                "streamTypes": 2,     # audio + video
                "channelType": 1,     # live broadcast
                "subscribeAudioUids": ["#allstream#"],
                "subscribeVideoUids": ["#allstream#"],
                "subscribeUidGroup": 0,
            }
            client_request: Dict[str, Any] = {"recordingConfig": recording_config}
        else:
            recording_config = {
                "maxIdleTime": settings.recording_max_idle_time,
                "streamTypes": 2,
                "channelType": 1,
                "audioProfile": 1,
                "videoStreamType": 0,
                "transcodingConfig": {
                    "width": 1280,
                    "height": 720,
                    "fps": 15,
                    "bitrate": 2260,
                    "mixedVideoLayout": 1,          # best-fit grid
                    "backgroundColor": "#000000",
                },
                "subscribeUidGroup": 0,
            }
            client_request = {
                "recordingConfig": recording_config,
                "recordingFileConfig": {"avFileType": ["hls", "mp4"]},
            }

        client_request["storageConfig"] = self._storage_config(cname, mode)
        if token:
            client_request["token"] = token

        data = self._post(
            f"resourceid/{resource_id}/mode/{_PROVIDER_MODE[mode]}/start",
            {"cname": cname, "uid": str(uid), "clientRequest": client_request},
        )
        sid = data.get("sid")
        if not sid:
            raise RecordingProviderError("start response missing sid", details=data)
        return sid

    def stop(self, resource_id: str, sid: str, mode: str, cname: str, uid: str) -> Dict[str, Any]:
        _check_mode(mode)
        return self._post(
            f"resourceid/{resource_id}/sid/{sid}/mode/{_PROVIDER_MODE[mode]}/stop",
            {"cname": cname, "uid": str(uid), "clientRequest": {}},
            error_cls=RecordingStopError,
        )


@dataclass
class RecordingHandle:
    mode: str
    resource_id: Optional[str] = None
    sid: Optional[str] = None
    error: Optional[str] = None
    already_running: bool = False

    @property
    def started(self) -> bool:
        return bool(self.resource_id and self.sid)


@dataclass
class StopOutcome:
    mode: str
    already_stopped: bool = False
    file_list: list = field(default_factory=list)
    error: Optional[str] = None
    details: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RecordingLifecycleManager:

    def __init__(self, client: Optional[AgoraRecordingClient] = None):
        self.client = client or AgoraRecordingClient()

    # ----------------------------
    # provider passthroughs
    # ----------------------------
    def acquire_resource(self, session_code: str, uid: str) -> str:
        return self.client.acquire(session_code, uid)

    def start_recording(self, resource_id: str, session_code: str, uid: str, mode: str, token: Optional[str] = None) -> str:
        return self.client.start(resource_id, session_code, uid, _check_mode(mode), token=token)

    # ----------------------------
    # session level
    # ----------------------------
    def _stored_handle(self, db: Session, session_id: str, mode: str) -> Optional[RecordingHandle]:
        resource_col, sid_col = _HANDLE_COLUMNS[mode]
        row = db.execute(
            select(getattr(DiscussionSession, resource_col), getattr(DiscussionSession, sid_col))
            .where(DiscussionSession.id == session_id)
        ).first()
        if row is None or not row[0] or not row[1]:
            return None
        return RecordingHandle(mode=mode, resource_id=row[0], sid=row[1], already_running=True)

    def start_mode(self, db: Session, session: DiscussionSession, mode: str, token: Optional[str] = None) -> RecordingHandle:
        """
        Acquire + start one mode and persist its handle. Never raises provider errors.

        A mode that already has a stored handle is returned as is, without a
        provider call. When a concurrent start stored its handle first, the
        recording started here is stopped again and the stored one is returned.
        """
        _check_mode(mode)
        existing = self._stored_handle(db, session.id, mode)
        if existing is not None:
            logger.info("[RECORDING] session=%s mode=%s already running sid=%s", session.id, mode, existing.sid)
            return existing

        uid = recorder_uid(mode)
        handle = RecordingHandle(mode=mode)
        try:
            handle.resource_id = self.acquire_resource(session.session_code, uid)
            handle.sid = self.start_recording(handle.resource_id, session.session_code, uid, mode, token=token)
        except RecordingProviderError as e:
            logger.error("[RECORDING] session=%s mode=%s start failed: %s details=%s", session.id, mode, e, e.details)
            handle.error = str(e)
            return handle

        resource_col, sid_col = _HANDLE_COLUMNS[mode]
        result = db.execute(
            update(DiscussionSession)
            .where(
                DiscussionSession.id == session.id,
                getattr(DiscussionSession, resource_col).is_(None),
                getattr(DiscussionSession, sid_col).is_(None),
            )
            .values({resource_col: handle.resource_id, sid_col: handle.sid})
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount != 1:
            # another start stored its handle first; ours would be unreachable
            logger.info("[RECORDING] session=%s mode=%s lost start race, stopping sid=%s", session.id, mode, handle.sid)
            try:
                self.client.stop(handle.resource_id, handle.sid, mode, session.session_code, uid)
            except RecordingStopError as e:
                logger.error("[RECORDING] session=%s mode=%s orphan stop failed: %s details=%s", session.id, mode, e, e.details)
            return self._stored_handle(db, session.id, mode) or handle

        logger.info("[RECORDING] session=%s mode=%s started resource=%s sid=%s", session.id, mode, handle.resource_id, handle.sid)
        return handle

    def start_session_recordings(self, db: Session, session: DiscussionSession, token: Optional[str] = None) -> Dict[str, RecordingHandle]:
        # a failure in one mode must not block the other
        return {mode: self.start_mode(db, session, mode, token=token) for mode in MODES}

    def stop_recording(
        self,
        db: Session,
        session_id: str,
        mode: str,
        cname: Optional[str] = None,
        uid: Optional[str] = None,
    ) -> StopOutcome:
        """
        Stop one mode. Returns already_stopped=True without any provider call
        when the stored handle is null. Raises RecordingStopError when the
        provider rejects the stop; the handle is kept so the caller may retry.
        """
        _check_mode(mode)
        session = db.get(DiscussionSession, session_id)
        if session is None:
            raise SessionNotFound(session_id)

        resource_col, sid_col = _HANDLE_COLUMNS[mode]
        resource_id = getattr(session, resource_col)
        sid = getattr(session, sid_col)

        if not resource_id or not sid:
            logger.info("[RECORDING] session=%s mode=%s already stopped", session_id, mode)
            return StopOutcome(mode=mode, already_stopped=True)

        data = self.client.stop(resource_id, sid, mode, cname or session.session_code, uid or recorder_uid(mode))

        # clear only the handle we stopped; a concurrent stop may already have cleared it
        db.execute(
            update(DiscussionSession)
            .where(
                DiscussionSession.id == session_id,
                getattr(DiscussionSession, resource_col) == resource_id,
                getattr(DiscussionSession, sid_col) == sid,
            )
            .values({resource_col: None, sid_col: None})
            .execution_options(synchronize_session=False)
        )
        db.commit()

        server_response = data.get("serverResponse") or {}
        logger.info("[RECORDING] session=%s mode=%s stopped sid=%s", session_id, mode, sid)
        return StopOutcome(mode=mode, file_list=server_response.get("fileList") or [])

    def stop_session_recordings(self, db: Session, session_id: str) -> Dict[str, StopOutcome]:
        outcomes: Dict[str, StopOutcome] = {}
        for mode in MODES:
            try:
                outcomes[mode] = self.stop_recording(db, session_id, mode)
            except RecordingStopError as e:
                logger.error("[RECORDING] session=%s mode=%s stop failed: %s details=%s", session_id, mode, e, e.details)
                outcomes[mode] = StopOutcome(mode=mode, error=str(e), details=e.details)
        return outcomes
