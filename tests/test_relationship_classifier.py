"""
Tests for the relationship classifiers and the model-answer parser.
"""

import pytest

from topicgraph.core.exceptions import ClassifierError
from topicgraph.llm.relationship_classifier import (
    LLMRelationshipClassifier,
    Relation,
    SimilarityThresholdClassifier,
    build_user_prompt,
    parse_classifications,
)


# ═══════════════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════════════

class TestParseClassifications:

    def test_bare_array(self):
        out = parse_classifications('["PARENT", "SIBLING"]', 2)
        assert out == [Relation.PARENT, Relation.SIBLING]

    def test_code_fence(self):
        raw = 'Here you go:\n```json\n["CHILD", "UNRELATED"]\n```'
        assert parse_classifications(raw, 2) == [Relation.CHILD, Relation.UNRELATED]

    def test_object_with_classifications(self):
        raw = '{"classifications": ["sibling"]}'
        assert parse_classifications(raw, 1) == [Relation.SIBLING]

    def test_array_wrapped_in_prose(self):
        raw = 'The answer is ["PARENT"] based on the labels.'
        assert parse_classifications(raw, 1) == [Relation.PARENT]

    def test_case_and_whitespace_tolerated(self):
        assert parse_classifications('[" child "]', 1) == [Relation.CHILD]

    @pytest.mark.parametrize("raw", ["not json at all", "[unquoted]", ""])
    def test_malformed_json(self, raw):
        with pytest.raises(ClassifierError):
            parse_classifications(raw, 1)

    def test_none(self):
        with pytest.raises(ClassifierError):
            parse_classifications(None, 1)

    def test_wrong_length(self):
        with pytest.raises(ClassifierError) as exc_info:
            parse_classifications('["PARENT"]', 2)
        assert exc_info.value.context["expected"] == 2

    def test_unknown_label(self):
        with pytest.raises(ClassifierError):
            parse_classifications('["COUSIN"]', 1)

    def test_non_string_label(self):
        with pytest.raises(ClassifierError):
            parse_classifications("[1]", 1)

    def test_object_without_list(self):
        with pytest.raises(ClassifierError):
            parse_classifications('{"answer": "PARENT"}', 1)


class TestPrompt:

    def test_numbers_candidates(self):
        prompt = build_user_prompt("attention", ["transformer", "rnn"])
        assert "SUBJECT: attention" in prompt
        assert "1. transformer" in prompt
        assert "2. rnn" in prompt
        assert "2 labels" in prompt


# ═══════════════════════════════════════════════════════════════════════
# LLM classifier
# ═══════════════════════════════════════════════════════════════════════

def _completion(answer):
    prompts = []

    async def complete(system_prompt, user_prompt):
        prompts.append((system_prompt, user_prompt))
        if isinstance(answer, Exception):
            raise answer
        return answer

    complete.prompts = prompts
    return complete


class TestLLMRelationshipClassifier:

    @pytest.mark.asyncio
    async def test_parses_answer(self):
        complete = _completion('["PARENT", "SIBLING"]')
        clf = LLMRelationshipClassifier(complete)
        out = await clf.classify("attention", ["transformer", "self-attention"])
        assert out == [Relation.PARENT, Relation.SIBLING]
        assert clf.stats == {"calls": 1, "degraded": 0}
        assert "transformer" in complete.prompts[0][1]

    @pytest.mark.asyncio
    async def test_malformed_answer_degrades_to_empty(self):
        clf = LLMRelationshipClassifier(_completion("I think they are related."))
        assert await clf.classify("a", ["b"]) == []
        assert clf.stats["degraded"] == 1

    @pytest.mark.asyncio
    async def test_wrong_length_degrades(self):
        clf = LLMRelationshipClassifier(_completion('["PARENT"]'))
        assert await clf.classify("a", ["b", "c"]) == []

    @pytest.mark.asyncio
    async def test_transport_error_degrades(self):
        clf = LLMRelationshipClassifier(_completion(ConnectionError("offline")))
        assert await clf.classify("a", ["b"]) == []
        assert clf.stats["degraded"] == 1

    @pytest.mark.asyncio
    async def test_no_candidates_skips_call(self):
        complete = _completion('[]')
        clf = LLMRelationshipClassifier(complete)
        assert await clf.classify("a", []) == []
        assert complete.prompts == []
        assert clf.stats["calls"] == 0


# ═══════════════════════════════════════════════════════════════════════
# Similarity threshold fallback
# ═══════════════════════════════════════════════════════════════════════

class TestSimilarityThresholdClassifier:

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self):
        clf = SimilarityThresholdClassifier(min_similarity=0.6)
        out = await clf.classify("a", ["b", "c", "d"], [0.9, 0.6, 0.59])
        assert out == [Relation.SIBLING, Relation.SIBLING, Relation.UNRELATED]

    @pytest.mark.asyncio
    async def test_caps_accepted(self):
        clf = SimilarityThresholdClassifier(min_similarity=0.5, max_edges=2)
        out = await clf.classify("a", ["b", "c", "d"], [0.9, 0.8, 0.7])
        assert out.count(Relation.SIBLING) == 2
        assert out[2] == Relation.UNRELATED

    @pytest.mark.asyncio
    async def test_never_hierarchical(self):
        clf = SimilarityThresholdClassifier(min_similarity=0.0)
        out = await clf.classify("a", ["b", "c"], [1.0, 0.99])
        assert Relation.PARENT not in out
        assert Relation.CHILD not in out

    @pytest.mark.asyncio
    async def test_missing_scores(self):
        clf = SimilarityThresholdClassifier()
        assert await clf.classify("a", ["b"]) == []
        assert await clf.classify("a", ["b"], [0.9, 0.8]) == []
