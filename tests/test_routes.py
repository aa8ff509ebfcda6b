import pytest
from httpx import ASGITransport, AsyncClient

from assessor.deduplicator import GenerationCache, GenerationDeduplicator
from assessor.deps import get_deduplicator, get_presentation_tracker, get_saga, get_writing, get_writing_tracker
from assessor.eligibility import EligibilityTracker
from assessor.errors import RecordStoreError, StorageError, UpstreamFailed
from assessor.main import app
from assessor.retry import RetryPolicy
from assessor.saga import UploadSagaCoordinator
from assessor.schemas import Workflow
from assessor.writing import WritingAssessments


async def _no_sleep(delay):
	return None


class _Services:
	def __init__(self, records, videos, documents, evaluation_text):
		self.text = evaluation_text
		self.fail = False

		async def generate(prompt, **params):
			if self.fail:
				raise UpstreamFailed("gemini is down")
			return self.text

		async def upstream(category):
			return await generate("")

		policy = RetryPolicy(sleep=_no_sleep)
		self.writing_tracker = EligibilityTracker(records, Workflow.WRITING)
		self.presentation_tracker = EligibilityTracker(records, Workflow.PRESENTATION)
		self.dedup = GenerationDeduplicator(upstream, GenerationCache(300), retry_policy=policy, timeout_seconds=5)
		self.writing = WritingAssessments(generate, records, self.writing_tracker, retry_policy=policy, timeout_seconds=5)
		self.saga = UploadSagaCoordinator(videos, documents, records, self.presentation_tracker, upload_timeout=5, persist_timeout=5)


@pytest.fixture
def services(records, videos, documents, evaluation_text):
	services = _Services(records, videos, documents, evaluation_text)
	app.dependency_overrides[get_deduplicator] = lambda: services.dedup
	app.dependency_overrides[get_writing] = lambda: services.writing
	app.dependency_overrides[get_writing_tracker] = lambda: services.writing_tracker
	app.dependency_overrides[get_presentation_tracker] = lambda: services.presentation_tracker
	app.dependency_overrides[get_saga] = lambda: services.saga
	yield services
	app.dependency_overrides.clear()


@pytest.fixture
async def client(services):
	async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
		yield client


def _submission(subject_id="learner-1"):
	return {
		"subject_id": subject_id,
		"level": "b1",
		"language": "english",
		"prompt": "Describe your town.",
		"response": "My town is small and quiet.",
		"criteria": [{"name": "Coherence and Clarity", "score": 16, "feedback": "Clear."}],
	}


def _files(video_type="video/mp4"):
	return {
		"video": ("talk.mp4", b"\x00\x00\x00\x18ftypmp42", video_type),
		"document": ("slides.pdf", b"%PDF-1.4", "application/pdf"),
	}


@pytest.mark.anyio
async def test_generate(client):
	r = await client.get("/writing/generate", params={"level": "B1", "language": "English"})
	assert r.status_code == 200
	body = r.json()
	assert body["overall_score"] == 78
	assert body["provenance"] == "generated"
	assert len(body["criterion_scores"]) == 5


@pytest.mark.anyio
async def test_generate_rejects_unknown_level(client):
	r = await client.get("/writing/generate", params={"level": "d1", "language": "english"})
	assert r.status_code == 400
	assert r.json()["detail"] == "Invalid level. Must be one of: a1, a2, b1, b2, c1, c2"


@pytest.mark.anyio
async def test_generate_upstream_failure_is_503(client, services):
	services.fail = True
	r = await client.get("/writing/generate", params={"level": "b2", "language": "french"})
	assert r.status_code == 503
	assert "please try again" in r.json()["detail"]


@pytest.mark.anyio
async def test_evaluate(client):
	r = await client.post("/writing/evaluate", json={"question": "Describe your town.", "answer": "It is small."})
	assert r.status_code == 200
	assert r.json()["recommendations"][0] == "Read opinion articles and note useful collocations."


@pytest.mark.anyio
async def test_evaluate_requires_answer(client):
	r = await client.post("/writing/evaluate", json={"question": "Describe your town.", "answer": ""})
	assert r.status_code == 400


@pytest.mark.anyio
async def test_submit_then_cooldown(client):
	r = await client.post("/writing/submit", json=_submission())
	assert r.status_code == 201
	assert r.json()["score"] == 16

	r = await client.get("/writing/eligibility", params={"subject_id": "learner-1", "level": "b1", "language": "english"})
	assert r.json()["available"] is False
	assert r.json()["days_remaining"] == 7

	r = await client.post("/writing/submit", json=_submission())
	assert r.status_code == 403
	assert "next_available_at" in r.json()["detail"]

	r = await client.get("/writing/history/learner-1")
	assert len(r.json()["assessments"]) == 1


@pytest.mark.anyio
async def test_presentation_submit_once(client, videos, documents):
	form = {"subject_id": "learner-1", "level": "b1", "language": "english", "question_id": "2"}
	r = await client.post("/presentation/submit", data=form, files=_files())
	assert r.status_code == 200
	body = r.json()
	assert body["video"]["id"] == "video-1"
	assert body["document"]["view_link"] == "https://document.test/view/document-1"

	r = await client.post("/presentation/submit", data=form, files=_files())
	assert r.status_code == 409
	assert r.json()["detail"]["redirect_to"] == "/presentation-recommendations"
	assert videos.upload_calls == 1

	r = await client.get("/presentation/eligibility", params={"subject_id": "learner-1", "level": "b1", "language": "english"})
	assert r.json()["available"] is False


@pytest.mark.anyio
async def test_presentation_step_failure_is_502(client, videos, documents):
	documents.fail_upload = StorageError("drive down")
	form = {"subject_id": "learner-1", "level": "b1", "language": "english"}
	r = await client.post("/presentation/submit", data=form, files=_files())
	assert r.status_code == 502
	detail = r.json()["detail"]
	assert detail["step"] == "document_upload"
	assert detail["compensation_warnings"] == []
	assert videos.objects == {}


@pytest.mark.anyio
async def test_presentation_rejects_unsupported_video(client, videos):
	form = {"subject_id": "learner-1", "level": "b1", "language": "english"}
	r = await client.post("/presentation/submit", data=form, files=_files(video_type="video/x-msvideo"))
	assert r.status_code == 400
	assert videos.upload_calls == 0


@pytest.mark.anyio
async def test_presentation_rejects_oversized_upload_before_storing(client, services, videos, documents):
	services.saga.max_upload_bytes = 8
	form = {"subject_id": "learner-1", "level": "b1", "language": "english"}
	r = await client.post("/presentation/submit", data=form, files=_files())
	assert r.status_code == 400
	assert r.json()["detail"].startswith("Video file is too large")
	assert videos.upload_calls == 0 and documents.upload_calls == 0


@pytest.mark.anyio
async def test_writing_store_failure_is_503(client, records):
	records.fail_insert = RecordStoreError("database is locked")
	r = await client.post("/writing/submit", json=_submission())
	assert r.status_code == 503
	assert "database is locked" in r.json()["detail"]


@pytest.mark.anyio
async def test_info(client):
	r = await client.get("/info")
	assert r.status_code == 200
	assert r.json()["status"] == "ok"
