"""Tests for request classification into invalidation events."""

import json

from discovery_engine.invalidation import classify_operation, classify_request, classify_rest


def test_rest_post_create():
    events = classify_rest("/api/posts", "POST", user_id="u1")

    assert len(events) == 1
    assert events[0].action == "post_create"
    assert events[0].type == "content_update"
    assert events[0].content_type == "post"
    assert events[0].content_id is None


def test_rest_post_update_and_delete_carry_content_id():
    update = classify_rest("/api/posts/p1", "PATCH", user_id="u1")[0]
    delete = classify_rest("/api/posts/p1?force=1", "DELETE", user_id="u1")[0]

    assert (update.action, update.content_id) == ("post_update", "p1")
    assert (delete.action, delete.content_id) == ("post_delete", "p1")


def test_rest_post_interactions():
    assert classify_rest("/api/posts/p1/like", "POST", "u1")[0].action == "like"
    assert classify_rest("/api/posts/p1/like", "DELETE", "u1")[0].action == "unlike"
    assert classify_rest("/api/posts/p1/save", "POST", "u1")[0].action == "save"
    assert classify_rest("/api/posts/p1/comments", "POST", "u1")[0].action == "comment"
    assert classify_rest("/api/posts/p1/unknown", "POST", "u1") == []


def test_rest_social_and_profile():
    follow = classify_rest("/api/users/u2/follow", "POST", "u1")[0]
    profile = classify_rest("/api/profile", "PUT", "u1")[0]

    assert follow.action == "follow"
    assert follow.metadata["target_user_id"] == "u2"
    assert profile.action == "profile_update"
    assert classify_rest("/api/users/u2", "DELETE", "u1") == []


def test_rest_media_and_admin():
    media = classify_rest("/api/media/m1", "PUT", "u1")[0]
    admin = classify_rest("/api/admin/reindex", "POST", "u1")[0]

    assert (media.action, media.content_type, media.content_id) == ("media_update", "media", "m1")
    assert (admin.action, admin.type) == ("admin_operation", "system_event")


def test_rest_reads_are_ignored():
    assert classify_rest("/api/posts/p1", "GET", "u1") == []
    assert classify_rest("/api/admin/stats", "GET", "u1") == []


def test_graphql_whole_word_matching():
    """unlikePost must not also count as likePost."""
    events = classify_operation("mutation { unlikePost(postId: $id) { id } }", "u1", {"postId": "p7"})

    assert [e.action for e in events] == ["unlike"]
    assert events[0].content_id == "p7"


def test_graphql_multiple_mutations():
    events = classify_operation("mutation { createPost(input: $p) { id } followUser(id: $u) { id } }", "u1")

    assert sorted(e.action for e in events) == ["follow", "post_create"]
    follow = next(e for e in events if e.action == "follow")
    assert follow.content_id is None


def test_graphql_request_body_parsing():
    body = json.dumps({"query": "mutation { savePost(postId: \"p1\") { id } }", "variables": {"postId": "p1"}})

    events = classify_request("/graphql", "POST", "u1", body)

    assert [(e.action, e.content_id) for e in events] == [("save", "p1")]


def test_graphql_operation_name_and_bad_bodies():
    assert classify_request("/graphql", "POST", "u1", {"operationName": "deletePost"})[0].action == "post_delete"
    assert classify_request("/graphql", "POST", "u1", "not json") == []
    assert classify_request("/graphql", "POST", "u1", None) == []
