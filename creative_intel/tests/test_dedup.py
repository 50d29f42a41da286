import threading

from creative_intel.dedup import DedupIndex, compute_content_hash


def test_content_hash_is_sha256_hex():
    digest = compute_content_hash(b"same bytes")

    assert len(digest) == 64
    assert digest == compute_content_hash(b"same bytes")
    assert digest != compute_content_hash(b"other bytes")


def test_from_rows_skips_rows_without_hash_or_tags():
    index = DedupIndex.from_rows([
        {"ad_id": 1, "content_hash": "h1", "tags": {"format_type": "static_image"}},
        {"ad_id": 2, "content_hash": None, "tags": {"format_type": "static_image"}},
        {"ad_id": 3, "content_hash": "h3", "tags": None},
    ])

    assert len(index) == 1
    assert "h1" in index
    assert index.lookup("h1").ad_id == "1"


def test_lookup_misses_return_none():
    index = DedupIndex()

    assert index.lookup("missing") is None
    assert index.lookup(None) is None


def test_first_writer_wins():
    index = DedupIndex()

    assert index.add("h", "first", {"format_type": "static_image"}) is True
    assert index.add("h", "second", {"format_type": "product_demo"}) is False
    assert index.lookup("h").ad_id == "first"
    assert index.lookup("h").tags["format_type"] == "static_image"


def test_stored_tags_are_detached_from_caller():
    tags = {"format_type": "static_image"}
    index = DedupIndex()
    index.add("h", "ad-1", tags)

    tags["format_type"] = "product_demo"
    assert index.lookup("h").tags["format_type"] == "static_image"


def test_concurrent_adds_keep_exactly_one_entry_per_hash():
    index = DedupIndex()
    results = []
    barrier = threading.Barrier(8)

    def worker(n):
        barrier.wait()
        results.append(index.add("shared", f"ad-{n}", {"format_type": "static_image"}))
        for i in range(50):
            index.add(f"h-{n}-{i}", f"ad-{n}", {"format_type": "static_image"})

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert len(index) == 1 + 8 * 50
