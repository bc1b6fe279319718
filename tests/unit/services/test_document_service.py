import pytest

from app.core.exceptions import ConflictError, NDRError, NotFoundError, ValidationError
from app.schemas.documents import DocumentCreateRequest, DocumentReorderRequest, DocumentUpdateRequest
from app.schemas.ndr import (
    Document,
    DocumentBindingStatus,
    DocumentsPage,
    DocumentVersion,
    DocumentVersionDiff,
    DocumentVersionsPage,
)
from app.services.document_service import DocumentService


@pytest.fixture
def service(mock_ndr) -> DocumentService:
    return DocumentService(mock_ndr)


def _doc(document_id: int, title: str = "", metadata=None) -> Document:
    return Document(id=document_id, title=title or f"Doc {document_id}", metadata=metadata)


def _documents_by_id(mock_ndr, *documents: Document) -> None:
    by_id = {doc.id: doc for doc in documents}

    async def get_document(meta, document_id):
        if document_id not in by_id:
            raise NDRError("ndr request failed: 404 not found", status_code=404)
        return by_id[document_id]

    mock_ndr.get_document.side_effect = get_document


@pytest.mark.asyncio
async def test_create_binds_to_node(service, mock_ndr, meta):
    mock_ndr.create_document.return_value = _doc(10, "Lesson")

    await service.create(meta, DocumentCreateRequest(title="Lesson", type="markdown_v1", node_id=3))

    body = mock_ndr.create_document.call_args.args[1]
    assert body.to_payload() == {"title": "Lesson", "type": "markdown_v1"}
    mock_ndr.bind_document.assert_awaited_once_with(meta, 3, 10)


@pytest.mark.asyncio
async def test_update_forwards_only_set_fields(service, mock_ndr, meta):
    mock_ndr.update_document.return_value = _doc(10)

    await service.update(meta, 10, DocumentUpdateRequest(metadata={"draft": None, "level": 2}))

    body = mock_ndr.update_document.call_args.args[2]
    assert body.to_payload() == {"metadata": {"draft": None, "level": 2}}


@pytest.mark.asyncio
async def test_versions_fall_back_to_items(service, mock_ndr, meta):
    v1 = DocumentVersion(document_id=10, version_number=1, title="Draft")
    v2 = DocumentVersion(document_id=10, version_number=2, title="Final")
    mock_ndr.list_document_versions.return_value = DocumentVersionsPage(page=1, size=20, total=2, items=[v2, v1])
    mock_ndr.get_document_version.return_value = v1

    versions = await service.list_versions(meta, 10, page=1, size=20)
    first = await service.get_version(meta, 10, 1)

    assert [v.version_number for v in versions.entries] == [2, 1]
    assert versions.versions == [v2, v1]
    assert first.title == "Draft"
    mock_ndr.get_document_version.assert_awaited_once_with(meta, 10, 1)


@pytest.mark.asyncio
async def test_add_then_remove_only_reference_deletes_key(service, mock_ndr, meta):
    _documents_by_id(mock_ndr, _doc(1, "Lesson"), _doc(2, "Glossary"))

    await service.add_reference(meta, 1, 2)

    added = mock_ndr.update_document.call_args.args[2].to_payload()
    [entry] = added["metadata"]["references"]
    assert entry["document_id"] == 2
    assert entry["title"] == "Glossary"
    assert entry["added_at"]

    _documents_by_id(mock_ndr, _doc(1, "Lesson", {"references": added["metadata"]["references"]}), _doc(2))
    await service.remove_reference(meta, 1, 2)

    removed = mock_ndr.update_document.call_args.args[2].to_payload()
    assert removed == {"metadata": {"references": None}}


@pytest.mark.asyncio
async def test_remove_keeps_other_references(service, mock_ndr, meta):
    references = [{"document_id": 2, "title": "B"}, {"document_id": 3, "title": "C"}]
    _documents_by_id(mock_ndr, _doc(1, metadata={"references": references}))

    await service.remove_reference(meta, 1, 2)

    payload = mock_ndr.update_document.call_args.args[2].to_payload()
    assert payload == {"metadata": {"references": [{"document_id": 3, "title": "C"}]}}


@pytest.mark.asyncio
async def test_reference_errors(service, mock_ndr, meta):
    _documents_by_id(
        mock_ndr,
        _doc(1, metadata={"references": [{"document_id": 2, "title": "B"}]}),
        _doc(2),
        _doc(4, metadata={"references": "oops"}),
        _doc(5),
    )

    with pytest.raises(ValidationError, match="self-reference"):
        await service.add_reference(meta, 1, 1)
    with pytest.raises(ConflictError, match="already exists"):
        await service.add_reference(meta, 1, 2)
    with pytest.raises(NotFoundError, match="referenced document not found"):
        await service.add_reference(meta, 1, 77)
    with pytest.raises(NotFoundError, match="no references found"):
        await service.remove_reference(meta, 5, 2)
    with pytest.raises(NotFoundError, match="reference not found"):
        await service.remove_reference(meta, 1, 3)
    with pytest.raises(ValidationError, match="invalid references format"):
        await service.remove_reference(meta, 4, 2)

    mock_ndr.update_document.assert_not_called()


@pytest.mark.asyncio
async def test_add_reference_propagates_other_ndr_errors(service, mock_ndr, meta):
    mock_ndr.get_document.side_effect = [_doc(1), NDRError("ndr request failed: 503", status_code=503)]

    with pytest.raises(NDRError):
        await service.add_reference(meta, 1, 2)


@pytest.mark.asyncio
async def test_referencing_documents(service, mock_ndr, meta):
    mock_ndr.list_documents.return_value = DocumentsPage(
        items=[
            _doc(1, metadata={"references": [{"document_id": 9}]}),
            _doc(2, metadata={"references": [{"document_id": 3}]}),
            _doc(3, metadata={"references": "broken"}),
            _doc(4),
        ]
    )

    referencing = await service.get_referencing_documents(meta, 9)

    assert [doc.id for doc in referencing] == [1]
    mock_ndr.list_documents.assert_awaited_once_with(meta, page=1, size=1000)


@pytest.mark.asyncio
async def test_create_validates_type_content_and_metadata(service, mock_ndr, meta):
    with pytest.raises(ValidationError, match="invalid document type: essay"):
        await service.create(meta, DocumentCreateRequest(title="Essay", type="essay"))
    with pytest.raises(ValidationError, match="does not match expected format 'html'"):
        await service.create(
            meta,
            DocumentCreateRequest(
                title="Overview", type="knowledge_overview_v1", content={"format": "yaml", "data": "a: 1"}
            ),
        )
    with pytest.raises(ValidationError, match="difficulty must be between 1 and 5"):
        await service.create(meta, DocumentCreateRequest(title="Quiz", metadata={"difficulty": 9}))
    mock_ndr.create_document.assert_not_called()

    mock_ndr.create_document.return_value = _doc(11, "Overview")
    await service.create(
        meta,
        DocumentCreateRequest(
            title="Overview", type="knowledge_overview_v1", content={"format": "html", "data": "<p>Hi</p>"}
        ),
    )
    mock_ndr.create_document.assert_awaited_once()


@pytest.mark.asyncio
async def test_update_checks_content_only_with_type(service, mock_ndr, meta):
    mock_ndr.update_document.return_value = _doc(3)

    await service.update(meta, 3, DocumentUpdateRequest(content={"format": "anything", "data": "x"}))
    await service.update(meta, 3, DocumentUpdateRequest(type="dictation_v1"))
    await service.update(
        meta, 3, DocumentUpdateRequest(type="dictation_v1", content={"format": "yaml", "data": "word: ok"})
    )
    assert mock_ndr.update_document.await_count == 3

    with pytest.raises(ValidationError, match="content.data must be a string"):
        await service.update(meta, 3, DocumentUpdateRequest(type="dictation_v1", content={"format": "yaml", "data": 1}))
    with pytest.raises(ValidationError, match="tags must be an array"):
        await service.update(meta, 3, DocumentUpdateRequest(metadata={"tags": "a,b"}))
    assert mock_ndr.update_document.await_count == 3


@pytest.mark.asyncio
async def test_reorder_type_filter(service, mock_ndr, meta):
    mock_ndr.reorder_documents.return_value = [_doc(2), _doc(1)]

    with pytest.raises(ValidationError, match="ordered_ids cannot be empty"):
        await service.reorder(meta, DocumentReorderRequest(ordered_ids=[]))

    documents = await service.reorder(meta, DocumentReorderRequest(ordered_ids=[2, 1]))
    assert [doc.id for doc in documents] == [2, 1]
    assert mock_ndr.reorder_documents.call_args.args[1].to_payload() == {"ordered_ids": [2, 1]}

    await service.reorder(meta, DocumentReorderRequest(ordered_ids=[2, 1], type=" dictation_v1 "))
    assert mock_ndr.reorder_documents.call_args.args[1].to_payload() == {"ordered_ids": [2, 1], "type": "dictation_v1"}

    await service.reorder(meta, DocumentReorderRequest(ordered_ids=[2, 1], type="   "))
    assert mock_ndr.reorder_documents.call_args.args[1].to_payload() == {"ordered_ids": [2, 1], "type": None}

    await service.reorder(meta, DocumentReorderRequest.model_validate({"ordered_ids": [2, 1], "type": None}))
    assert mock_ndr.reorder_documents.call_args.args[1].to_payload() == {"ordered_ids": [2, 1], "type": None}


@pytest.mark.asyncio
async def test_version_diff_restore_purge_and_bindings(service, mock_ndr, meta):
    mock_ndr.get_document_version_diff.return_value = DocumentVersionDiff(
        from_version=1, to_version=3, title_diff={"old": "Draft", "new": "Final"}
    )
    mock_ndr.restore_document_version.return_value = Document(id=10, title="Draft", version_number=4)
    mock_ndr.get_document_binding_status.return_value = DocumentBindingStatus(total_bindings=2, node_ids=[3, 8])

    diff = await service.diff_versions(meta, 10, 1, 3)
    restored = await service.restore_version(meta, 10, 1)
    await service.purge(meta, 10)
    bindings = await service.get_binding_status(meta, 10)

    assert diff.title_diff.new == "Final"
    mock_ndr.get_document_version_diff.assert_awaited_once_with(meta, 10, 1, 3)
    assert restored.version == 4
    mock_ndr.restore_document_version.assert_awaited_once_with(meta, 10, 1)
    mock_ndr.purge_document.assert_awaited_once_with(meta, 10)
    assert bindings.node_ids == [3, 8]
