"""Unit tests for reply normalization."""

import json

import pytest

from routebench.errors import ErrorKind
from routebench.normalizer import (
    ExtractionNormalizer,
    NormalizerCapabilities,
    decode_json_object,
)

JOB_URL = (
    "https://www.linkedin.com/jobs/view/4237328365/?alternateChannel=search"
    "&refId=3BCyM4GbmRLDj8p8%2BtVfew%3D%3D&trackingId=Wl75W2H7UIcVefE%2BXh%2BNZw%3D%3D"
)


@pytest.fixture
def normalizer() -> ExtractionNormalizer:
    return ExtractionNormalizer(["job_url", "person_name"])


class TestDecodeJsonObject:
    """Tests for decode_json_object."""

    def test_plain_json(self):
        """Test that a bare JSON object decodes."""
        assert decode_json_object('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self):
        """Test that JSON inside a ```json fence is decoded."""
        text = 'Here you go:\n```json\n{"a": 1}\n```\nThanks'
        assert decode_json_object(text) == {"a": 1}

    def test_unlabelled_fence(self):
        """Test that a plain ``` fence also works."""
        assert decode_json_object('```\n{"a": 2}\n```') == {"a": 2}

    def test_json_surrounded_by_prose(self):
        """Test that an object embedded in text is found."""
        assert decode_json_object('Sure! {"a": 3} Hope that helps.') == {"a": 3}

    def test_trailing_prose_with_braces_ignored(self):
        """Test that braces in commentary after the object do not spoil it."""
        text = (
            '{"endpoint_id": "analyze_candidate_fit", "parameters": {"job_url": "https://x"}}\n'
            "Note: I used {job_url} from the sentence and left {person_name} out."
        )
        assert decode_json_object(text) == {
            "endpoint_id": "analyze_candidate_fit",
            "parameters": {"job_url": "https://x"},
        }

    def test_prose_with_braces_before_object(self):
        """Test that a brace in leading text is skipped over."""
        text = 'Filling the {placeholders}: {"endpoint_id": "e", "parameters": {}}'
        assert decode_json_object(text) == {"endpoint_id": "e", "parameters": {}}

    def test_first_of_two_fenced_blocks(self):
        """Test that the first fenced object wins when there are several."""
        text = (
            '```json\n{"endpoint_id": "first"}\n```\n'
            "or alternatively\n"
            '```json\n{"endpoint_id": "second"}\n```'
        )
        assert decode_json_object(text) == {"endpoint_id": "first"}

    def test_fence_without_object_falls_through(self):
        """Test that a fence holding no object does not hide a later one."""
        text = '```\nnot json\n```\nAnswer: {"endpoint_id": "e"}'
        assert decode_json_object(text) == {"endpoint_id": "e"}

    def test_non_object_json_returned_as_is(self):
        """Test that a JSON array comes back for the caller to reject."""
        assert decode_json_object(" [1, 2] ") == [1, 2]

    def test_no_json_raises(self):
        """Test that plain text raises a decode error."""
        with pytest.raises(json.JSONDecodeError):
            decode_json_object("no json here")


class TestExtract:
    """Tests for ExtractionNormalizer.extract on well-formed replies."""

    def test_parameters_mapping(self, normalizer):
        """Test the canonical endpoint_id + parameters object shape."""
        raw = json.dumps(
            {
                "endpoint_id": "analyze_candidate_fit",
                "parameters": {"job_url": JOB_URL, "person_name": "jane"},
            }
        )
        result = normalizer.extract(raw)
        assert result.error is None
        assert result.matched_endpoint == "analyze_candidate_fit"
        assert result.extracted_parameters == {"job_url": JOB_URL, "person_name": "jane"}

    def test_url_kept_verbatim(self, normalizer):
        """Test that percent-encoded query strings are not decoded."""
        raw = json.dumps({"endpoint_id": "x", "parameters": {"job_url": JOB_URL}})
        assert normalizer.extract(raw).extracted_parameters["job_url"] == JOB_URL

    def test_list_of_name_value_pairs(self, normalizer):
        """Test the [{name, value}] parameter container shape."""
        raw = json.dumps(
            {
                "endpoint_id": "analyze_candidate_fit",
                "parameters": [
                    {"name": "job_url", "value": JOB_URL},
                    {"name": "person_name", "value": "jane"},
                ],
            }
        )
        assert normalizer.extract(raw).extracted_parameters == {
            "job_url": JOB_URL,
            "person_name": "jane",
        }

    def test_first_pair_wins_on_repeated_name(self, normalizer):
        """Test that a repeated name keeps its first value."""
        raw = json.dumps(
            {
                "endpoint_id": "e",
                "parameters": [
                    {"name": "person_name", "value": "jane"},
                    {"name": "person_name", "value": "john"},
                ],
            }
        )
        assert normalizer.extract(raw).extracted_parameters["person_name"] == "jane"

    def test_fenced_reply(self, normalizer):
        """Test a reply wrapped in a markdown fence with commentary."""
        raw = (
            "Based on the sentence:\n```json\n"
            '{"endpoint": "analyze_candidate_fit", "params": {"person_name": "jane"}}'
            "\n```"
        )
        result = normalizer.extract(raw)
        assert result.matched_endpoint == "analyze_candidate_fit"
        assert result.extracted_parameters == {"job_url": None, "person_name": "jane"}

    def test_top_level_parameters(self, normalizer):
        """Test that expected names at the top level are picked up."""
        raw = json.dumps({"intent": "analyze_candidate_fit", "person_name": "jane"})
        result = normalizer.extract(raw)
        assert result.matched_endpoint == "analyze_candidate_fit"
        assert result.extracted_parameters["person_name"] == "jane"

    def test_container_beats_top_level(self, normalizer):
        """Test that the container value wins over a top-level duplicate."""
        raw = json.dumps(
            {
                "endpoint_id": "e",
                "person_name": "top",
                "parameters": {"person_name": "inner"},
            }
        )
        assert normalizer.extract(raw).extracted_parameters["person_name"] == "inner"

    def test_unexpected_parameters_ignored(self, normalizer):
        """Test that only expected parameter names are reported."""
        raw = json.dumps({"endpoint_id": "e", "parameters": {"language": "fr", "person_name": "a"}})
        assert normalizer.extract(raw).extracted_parameters == {
            "job_url": None,
            "person_name": "a",
        }

    def test_null_and_empty_values(self, normalizer):
        """Test that null stays None while an empty string counts as a value."""
        raw = json.dumps({"endpoint_id": "e", "parameters": {"job_url": None, "person_name": ""}})
        assert normalizer.extract(raw).extracted_parameters == {
            "job_url": None,
            "person_name": "",
        }

    def test_values_trimmed(self, normalizer):
        """Test that surrounding whitespace is removed."""
        raw = json.dumps({"endpoint_id": "e", "parameters": {"person_name": "  jane \n"}})
        assert normalizer.extract(raw).extracted_parameters["person_name"] == "jane"

    def test_non_string_values_rendered_as_json(self, normalizer):
        """Test that numbers and lists become their JSON text."""
        raw = json.dumps({"endpoint_id": "e", "parameters": {"job_url": 42, "person_name": ["a"]}})
        assert normalizer.extract(raw).extracted_parameters == {
            "job_url": "42",
            "person_name": '["a"]',
        }

    @pytest.mark.parametrize("label", ["none", "NONE", "null", "fallback", "", "No Match"])
    def test_fallback_labels_mean_no_endpoint(self, normalizer, label):
        """Test that fallback labels normalize to no endpoint."""
        raw = json.dumps({"endpoint_id": label, "parameters": {}})
        result = normalizer.extract(raw)
        assert result.error is None
        assert result.matched_endpoint is None

    def test_null_endpoint(self, normalizer):
        """Test that a JSON null endpoint means no match."""
        result = normalizer.extract('{"endpoint_id": null, "parameters": {}}')
        assert result.matched_endpoint is None

    def test_mapping_input(self, normalizer):
        """Test that an already-decoded mapping is accepted."""
        result = normalizer.extract({"endpoint_id": "e", "parameters": {"person_name": "jane"}})
        assert result.matched_endpoint == "e"

    def test_bytes_input(self, normalizer):
        """Test that UTF-8 bytes are decoded."""
        result = normalizer.extract(b'{"endpoint_id": "e", "parameters": {}}')
        assert result.matched_endpoint == "e"


class TestMalformed:
    """Tests for replies that cannot be normalized."""

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            "I think the answer is analyze_candidate_fit",
            '{"endpoint_id": "e", ',
            "[1, 2, 3]",
            '{"reasoning": "no useful keys"}',
            12345,
        ],
    )
    def test_malformed_reply_recorded_not_raised(self, normalizer, raw):
        """Test that unusable replies produce a MALFORMED_REPLY error."""
        result = normalizer.extract(raw)
        assert result.error is not None
        assert result.error.kind is ErrorKind.MALFORMED_REPLY
        assert result.matched_endpoint is None
        assert result.extracted_parameters == {"job_url": None, "person_name": None}

    def test_error_message_clipped(self, normalizer):
        """Test that long error messages are truncated."""
        raw = json.dumps({f"key_{i}" * 40: i for i in range(50)})
        result = normalizer.extract(raw)
        assert len(result.error.message) <= 500


class TestCapabilities:
    """Tests for NormalizerCapabilities."""

    def test_endpoint_classification_disabled(self):
        """Test that no endpoint is reported when classification is off."""
        normalizer = ExtractionNormalizer(
            ["person_name"], NormalizerCapabilities(can_classify_endpoint=False)
        )
        result = normalizer.extract('{"endpoint_id": "e", "parameters": {"person_name": "a"}}')
        assert result.matched_endpoint is None
        assert result.extracted_parameters == {"person_name": "a"}

    def test_parameter_extraction_disabled(self):
        """Test that every parameter is None when extraction is off."""
        normalizer = ExtractionNormalizer(
            ["person_name"], NormalizerCapabilities(can_extract_parameters=False)
        )
        result = normalizer.extract('{"endpoint_id": "e", "parameters": {"person_name": "a"}}')
        assert result.matched_endpoint == "e"
        assert result.extracted_parameters == {"person_name": None}


class TestRecords:
    """Tests for to_record and failure_record."""

    def test_to_record_carries_measurements(self, normalizer):
        """Test that identity and measurements land on the record."""
        record = normalizer.to_record(
            '{"endpoint_id": "e", "parameters": {"person_name": "jane"}}',
            prompt_version="v2",
            provider="cohere",
            iteration_index=4,
            latency_ms=850,
            tokens_in=300,
            tokens_out=25,
        )
        assert record.key == ("v2", "cohere", 4)
        assert record.matched_endpoint == "e"
        assert record.extracted_parameters["person_name"] == "jane"
        assert (record.latency_ms, record.tokens_in, record.tokens_out) == (850, 300, 25)
        assert record.error is None

    def test_to_record_malformed(self, normalizer):
        """Test that a malformed reply still yields a full record."""
        record = normalizer.to_record(
            "not json", prompt_version="v1", provider="claude", iteration_index=0
        )
        assert record.error.kind is ErrorKind.MALFORMED_REPLY
        assert dict(record.extracted_parameters) == {"job_url": None, "person_name": None}

    def test_failure_record(self, normalizer):
        """Test that a failed call becomes a PROVIDER_CALL_FAILED record."""
        record = normalizer.failure_record(
            "claude: HTTP 500",
            prompt_version="v1",
            provider="claude",
            iteration_index=2,
            latency_ms=30,
        )
        assert record.error.kind is ErrorKind.PROVIDER_CALL_FAILED
        assert record.error.message == "claude: HTTP 500"
        assert record.matched_endpoint is None
        assert record.latency_ms == 30
        assert record.tokens_in is None
        assert dict(record.extracted_parameters) == {"job_url": None, "person_name": None}


class TestWrappedReplies:
    """Tests for valid replies wrapped in commentary."""

    def test_commentary_with_braces_after_json(self, normalizer):
        """Test that a valid object followed by brace-laden notes is extracted."""
        raw = (
            json.dumps({"endpoint_id": "analyze_candidate_fit", "parameters": {"job_url": JOB_URL}})
            + "\nNote: I mapped {job_url} directly and could not find {person_name}."
        )
        result = normalizer.extract(raw)
        assert result.error is None
        assert result.matched_endpoint == "analyze_candidate_fit"
        assert result.extracted_parameters == {"job_url": JOB_URL, "person_name": None}

    def test_two_fenced_blocks(self, normalizer):
        """Test that the first of two fenced answers is used."""
        raw = (
            "Primary answer:\n```json\n"
            '{"endpoint_id": "analyze_candidate_fit", "parameters": {"person_name": "jane"}}'
            "\n```\nAlternative:\n```json\n"
            '{"endpoint_id": "none", "parameters": {}}'
            "\n```"
        )
        result = normalizer.extract(raw)
        assert result.error is None
        assert result.matched_endpoint == "analyze_candidate_fit"
        assert result.extracted_parameters["person_name"] == "jane"


class TestCompletion:
    """Tests for per-reply parameter completion."""

    @pytest.fixture
    def catalogue_normalizer(self) -> ExtractionNormalizer:
        return ExtractionNormalizer(
            ["job_url", "person_name"],
            endpoint_parameters={
                "analyze_candidate_fit": ["job_url", "person_name"],
                "list_jobs": [],
            },
        )

    def test_all_parameters_extracted(self, catalogue_normalizer):
        """Test that a fully populated reply is 100% complete."""
        raw = json.dumps(
            {
                "endpoint_id": "analyze_candidate_fit",
                "parameters": {"job_url": JOB_URL, "person_name": "jane"},
            }
        )
        assert catalogue_normalizer.extract(raw).completion_pct == 100.0

    def test_partial_extraction(self, catalogue_normalizer):
        """Test that one of two parameters gives 50%."""
        raw = json.dumps(
            {"endpoint_id": "analyze_candidate_fit", "parameters": {"person_name": "jane"}}
        )
        assert catalogue_normalizer.extract(raw).completion_pct == 50.0

    def test_endpoint_without_parameters_is_complete(self, catalogue_normalizer):
        """Test that an endpoint taking no parameters counts as complete."""
        raw = json.dumps({"endpoint_id": "list_jobs", "parameters": {}})
        assert catalogue_normalizer.extract(raw).completion_pct == 100.0

    def test_no_match_has_no_completion(self, catalogue_normalizer):
        """Test that a fallback endpoint leaves completion unset."""
        raw = json.dumps({"endpoint_id": "none", "parameters": {"job_url": JOB_URL}})
        assert catalogue_normalizer.extract(raw).completion_pct is None

    def test_unknown_endpoint_has_no_completion(self, catalogue_normalizer):
        """Test that an endpoint outside the catalogue leaves completion unset."""
        raw = json.dumps({"endpoint_id": "book_meeting", "parameters": {"job_url": JOB_URL}})
        assert catalogue_normalizer.extract(raw).completion_pct is None

    def test_malformed_reply_has_no_completion(self, catalogue_normalizer):
        """Test that an unusable reply leaves completion unset."""
        assert catalogue_normalizer.extract("not json").completion_pct is None

    def test_record_carries_completion(self, catalogue_normalizer):
        """Test that to_record copies completion onto the record."""
        record = catalogue_normalizer.to_record(
            '{"endpoint_id": "analyze_candidate_fit", "parameters": {"job_url": "x"}}',
            prompt_version="v1",
            provider="claude",
            iteration_index=0,
        )
        assert record.completion_pct == 50.0

    def test_failure_record_has_no_completion(self, catalogue_normalizer):
        """Test that a failed call carries no completion."""
        record = catalogue_normalizer.failure_record(
            "claude: HTTP 500", prompt_version="v1", provider="claude", iteration_index=0
        )
        assert record.completion_pct is None
