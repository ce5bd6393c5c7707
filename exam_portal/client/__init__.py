from exam_portal.client.api import PortalApi, PortalApiError
from exam_portal.client.config import ClientSettings
from exam_portal.client.proctoring import CameraDevice, CameraUnavailable, NoCamera
from exam_portal.client.session import ExamSession, InvalidTransition, ReviewSummary, SessionState
from exam_portal.client.storage import DraftStorage, ExamDraft, FileDraftStorage, MemoryDraftStorage, draft_key
from exam_portal.client.timers import SessionTimers, run_session
