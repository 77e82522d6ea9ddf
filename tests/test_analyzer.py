"""Tests for concern classification and response parsing."""

import json
from unittest.mock import Mock, patch

import pytest

from municipal_concerns.analyzer import (
    MAX_LLM_TEXT_LENGTH,
    ClassificationError,
    ClassifierChain,
    ConcernAnalyzer,
    ConcernClassifier,
    OpenAIClassifier,
    build_classifier_chain,
    build_prompt,
    build_summary_prompt,
    deduplicate_concerns,
    fallback_summary,
    parse_concerns,
)
from municipal_concerns.models import Concern, TextChunk


def _openai_client(content=None, error=None):
    """Mock OpenAI client whose chat completion returns ``content``."""
    client = Mock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        message = Mock()
        message.content = content
        choice = Mock()
        choice.message = message
        client.chat.completions.create.return_value = Mock(choices=[choice])
    return client


def _chunk(text='Residents want more buses.', index=1):
    return TextChunk('Example City', 'https://city.example/minutes', 'Minutes', index, 3, text)


class TestParseConcerns:
    """Test response validation."""

    def test_concern_list(self):
        raw = json.dumps({'concerns': [
            {'description': 'Not enough buses', 'category': 'Transit', 'severity': 'HIGH',
             'location': 'North end', 'summary': 'Residents wait an hour.'},
            {'description': 'Missing sidewalks', 'category': 'infrastructure', 'severity': 'low'},
        ]})
        concerns = parse_concerns(raw, 'https://city.example/doc')

        assert len(concerns) == 2
        assert concerns[0].category == 'transit'
        assert concerns[0].severity == 'high'
        assert concerns[0].location == 'North end'
        assert concerns[1].location == ''
        assert all(c.source_url == 'https://city.example/doc' for c in concerns)

    def test_single_object_with_issue_field(self):
        raw = '{"is_concern": true, "issue": "Clinic closing", "category": "healthcare", "severity": "medium"}'
        concerns = parse_concerns(raw)

        assert len(concerns) == 1
        assert concerns[0].description == 'Clinic closing'

    def test_json_inside_prose(self):
        raw = 'Here you go:\n```json\n{"concerns": [{"description": "Flooding", "category": "utilities", "severity": "high"}]}\n```'
        assert [c.description for c in parse_concerns(raw)] == ['Flooding']

    def test_trailing_prose_with_braces(self):
        raw = ('{"concerns": [{"description": "Clinic closing", "category": "healthcare", '
               '"severity": "high"}]} note: {x} was left out')
        assert [c.description for c in parse_concerns(raw)] == ['Clinic closing']

    @pytest.mark.parametrize('raw', [
        None,
        '',
        'No concerns found.',
        '{"concerns": [',
        '{"is_concern": false, "issue": "x", "category": "other", "severity": "low"}',
        '{"concerns": "none"}',
        '{"concerns": []}',
    ])
    def test_malformed_or_empty_means_no_concern(self, raw):
        assert parse_concerns(raw) == []

    def test_invalid_records_dropped(self):
        raw = json.dumps({'concerns': [
            {'description': 'Bad category', 'category': 'weather', 'severity': 'low'},
            {'description': 'Bad severity', 'category': 'other', 'severity': 'critical'},
            {'description': '', 'category': 'other', 'severity': 'low'},
            'not an object',
            {'description': 'Valid', 'category': 'social', 'severity': 'low'},
        ]})
        assert [c.description for c in parse_concerns(raw)] == ['Valid']


class TestDeduplicateConcerns:
    """Test concern deduplication."""

    def test_higher_severity_wins(self):
        concerns = [
            Concern('Potholes', 'infrastructure', 'low', location='Ward 1'),
            Concern('Transit gaps', 'transit', 'medium'),
            Concern('potholes ', 'infrastructure', 'high', location='ward 1'),
        ]
        unique = deduplicate_concerns(concerns)

        assert len(unique) == 2
        assert unique[0].severity == 'high'
        assert unique[1].description == 'Transit gaps'

    def test_lower_severity_ignored(self):
        concerns = [
            Concern('Potholes', 'infrastructure', 'high'),
            Concern('Potholes', 'infrastructure', 'low'),
        ]
        assert [c.severity for c in deduplicate_concerns(concerns)] == ['high']

    def test_different_locations_kept(self):
        concerns = [
            Concern('Potholes', 'infrastructure', 'low', location='Ward 1'),
            Concern('Potholes', 'infrastructure', 'low', location='Ward 2'),
        ]
        assert len(deduplicate_concerns(concerns)) == 2


class TestOpenAIClassifier:
    """Test the OpenAI provider."""

    def test_classify(self):
        client = _openai_client(json.dumps({'concerns': [
            {'description': 'Not enough buses', 'category': 'transit', 'severity': 'medium'},
        ]}))
        classifier = OpenAIClassifier(client, model='gpt-4o-mini')

        concerns = classifier.classify('Residents want more buses.', 'Example City', 'https://city.example/m')

        assert concerns[0].description == 'Not enough buses'
        assert concerns[0].source_url == 'https://city.example/m'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs['model'] == 'gpt-4o-mini'
        assert kwargs['response_format'] == {'type': 'json_object'}
        assert 'Example City' in kwargs['messages'][1]['content']

    def test_long_text_truncated(self):
        client = _openai_client('{"concerns": []}')
        OpenAIClassifier(client).classify('a' * (MAX_LLM_TEXT_LENGTH + 500), 'Example City')

        prompt = client.chat.completions.create.call_args.kwargs['messages'][1]['content']
        assert 'a' * MAX_LLM_TEXT_LENGTH in prompt
        assert 'a' * (MAX_LLM_TEXT_LENGTH + 1) not in prompt

    def test_api_error_raises_classification_error(self):
        classifier = OpenAIClassifier(_openai_client(error=RuntimeError('rate limited')), model='gpt-4o')

        with pytest.raises(ClassificationError) as exc_info:
            classifier.classify('text', 'Example City')

        assert exc_info.value.provider == 'openai:gpt-4o'

    def test_malformed_response_is_no_concern(self):
        assert OpenAIClassifier(_openai_client('not json at all')).classify('text', 'X') == []


class TestClassifierChain:
    """Test provider fallback."""

    def test_falls_back_to_next_provider(self):
        failing = OpenAIClassifier(_openai_client(error=RuntimeError('down')), model='gpt-4o-mini')
        working = OpenAIClassifier(_openai_client(
            '{"concerns": [{"description": "Flooding", "category": "utilities", "severity": "high"}]}'
        ), model='gpt-4o')

        concerns = ClassifierChain([failing, working]).classify('text', 'Example City')

        assert [c.description for c in concerns] == ['Flooding']

    def test_first_answer_wins(self):
        first = _openai_client('{"concerns": []}')
        second = _openai_client('{"concerns": []}')

        ClassifierChain([OpenAIClassifier(first), OpenAIClassifier(second)]).classify('text', 'X')

        second.chat.completions.create.assert_not_called()

    def test_all_providers_fail(self):
        chain = ClassifierChain([OpenAIClassifier(_openai_client(error=RuntimeError('down')))])
        assert chain.classify('text', 'X') == []

    def test_other_errors_propagate(self):
        broken = Mock(spec=ConcernClassifier)
        broken.classify.side_effect = KeyError('bug')

        with pytest.raises(KeyError):
            ClassifierChain([broken]).classify('text', 'X')

    def test_build_chain_from_config(self, sample_config):
        client = Mock()
        chain = build_classifier_chain(sample_config, client)

        assert [c.name for c in chain.classifiers] == ['openai:gpt-4o-mini', 'openai:gpt-4o']
        assert all(c.client is client for c in chain.classifiers)


class TestSummaries:
    """Test per-municipality summary text."""

    CONCERNS = [
        Concern('Bus gaps', 'transit', 'high', location='Ward 3', summary='Buses run hourly.'),
        Concern('Flooding', 'utilities', 'medium'),
    ]

    def test_openai_summary(self):
        client = _openai_client('  Residents want more buses.\n')
        summary = OpenAIClassifier(client, model='gpt-4o').summarize('Example City', self.CONCERNS)

        assert summary == 'Residents want more buses.'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert 'response_format' not in kwargs
        assert 'Bus gaps (Ward 3): Buses run hourly.' in kwargs['messages'][1]['content']

    def test_empty_reply_is_an_error(self):
        with pytest.raises(ClassificationError):
            OpenAIClassifier(_openai_client('   ')).summarize('Example City', self.CONCERNS)

    def test_chain_falls_back_to_records(self):
        chain = ClassifierChain([OpenAIClassifier(_openai_client(error=RuntimeError('down')))])

        summary = chain.summarize('Example City', self.CONCERNS)

        assert summary == fallback_summary('Example City', self.CONCERNS)
        assert summary == ('Example City has 2 community concerns in: transit, utilities. '
                           'Locations mentioned: Ward 3.')

    def test_chain_uses_next_provider(self):
        failing = OpenAIClassifier(_openai_client(error=RuntimeError('down')), model='gpt-4o-mini')
        working = OpenAIClassifier(_openai_client('Transit dominates.'), model='gpt-4o')

        summary = ClassifierChain([failing, working]).summarize('Example City', self.CONCERNS)

        assert summary == 'Transit dominates.'

    def test_analyzer_skips_model_without_concerns(self):
        classifier = Mock()

        summary = ConcernAnalyzer(classifier, delay=0).summarize('Perth', [])

        classifier.summarize.assert_not_called()
        assert summary == 'No community concerns were identified for Perth.'

    def test_prompt_truncated(self):
        concerns = [Concern('x' * 200, 'other', 'low')] * 100
        prompt = build_summary_prompt('Example City', concerns)

        assert len(prompt) < MAX_LLM_TEXT_LENGTH + 500


class TestConcernAnalyzer:
    """Test per-municipality analysis."""

    def test_concerns_collected_and_deduplicated(self):
        classifier = Mock()
        classifier.classify.side_effect = [
            [Concern('Bus gaps', 'transit', 'low')],
            [],
            [Concern('Bus gaps', 'transit', 'high'), Concern('Flooding', 'utilities', 'medium')],
        ]
        analyzer = ConcernAnalyzer(classifier, delay=0)

        concerns = analyzer.analyze('Example City', [_chunk(index=i) for i in (1, 2, 3)])

        assert [(c.description, c.severity) for c in concerns] == [('Bus gaps', 'high'), ('Flooding', 'medium')]
        assert classifier.classify.call_count == 3
        classifier.classify.assert_any_call('Residents want more buses.', 'Example City',
                                            'https://city.example/minutes')

    @patch('municipal_concerns.analyzer.time.sleep')
    def test_delay_between_calls(self, mock_sleep):
        classifier = Mock()
        classifier.classify.return_value = []

        ConcernAnalyzer(classifier, delay=1.5).analyze('Example City', [_chunk(), _chunk(), _chunk()])

        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(1.5)


def test_prompt_lists_categories_and_severities():
    prompt = build_prompt('Example City', 'Some text')

    assert 'Example City' in prompt
    assert 'Some text' in prompt
    for word in ('housing', 'transit', 'healthcare', 'low', 'medium', 'high'):
        assert word in prompt
