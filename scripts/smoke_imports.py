from audit_rag.chunking import chunk_document
from audit_rag.fusion import fuse
from audit_rag.retrieval import KeywordRetriever
from audit_rag.schema import Impact, SearchOptions, SourceDocument
from audit_rag.vector_store import InMemoryAuditStore


if __name__ == "__main__":
    finding = SourceDocument(
        doc_id="1",
        title="Reentrancy in withdraw",
        content="**Description** Funds are sent before the balance update. **Recommendation** Update state first.",
        impact=Impact.HIGH,
        protocol_name="Vault",
        firm_name="Example Audits",
    )
    chunks = chunk_document(finding)
    store = InMemoryAuditStore()
    store.index_document(finding, chunks, [[1.0, 0.0]] * len(chunks))
    keyword = KeywordRetriever(store).search("reentrancy withdraw", SearchOptions(top_k=3))
    fused = fuse([], keyword, top_k=3)
    print({"chunks": len(chunks), "keyword": len(keyword), "fused": len(fused)})
