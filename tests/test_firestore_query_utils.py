from quizhub.repositories.query_utils import apply_equality_filters, apply_where, chunked


class _FilterCapableQuery:
    def __init__(self):
        self.kwargs = None

    def where(self, *args, **kwargs):
        self.kwargs = kwargs
        return self


class _PositionalOnlyQuery:
    def __init__(self):
        self.calls = []

    def where(self, *args, **kwargs):
        if "filter" in kwargs:
            raise TypeError("filter keyword unsupported")
        self.calls.append(args)
        return self


def test_apply_where_prefers_field_filter_keyword():
    query = _FilterCapableQuery()

    result = apply_where(query, "subject", "==", "Biology")

    assert result is query
    assert "filter" in query.kwargs


def test_apply_where_falls_back_to_positional_for_simple_test_doubles():
    query = _PositionalOnlyQuery()

    apply_where(query, "subject", "==", "Biology")

    assert query.calls == [("subject", "==", "Biology")]


def test_apply_equality_filters_skips_blank_values():
    query = _PositionalOnlyQuery()

    apply_equality_filters(query, {"metadata.subject": "Physics", "metadata.type": "", "metadata.chapter": None})

    assert query.calls == [("metadata.subject", "==", "Physics")]


def test_chunked_respects_batch_write_ceiling():
    chunks = list(chunked(range(1201), size=500))

    assert [len(chunk) for chunk in chunks] == [500, 500, 201]
