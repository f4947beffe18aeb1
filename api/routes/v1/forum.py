"""
api/routes/v1/forum.py -- Forum post routes for the Check-In API.

Routes (in registration order to avoid path capture conflicts):
  GET  /forum/posts/recent -- newest posts, no pagination envelope
  GET  /forum/posts        -- paginated, filterable list of live posts
  POST /forum/posts        -- create a post attributed to the calling API key

Auth policy:
  GET  /forum/posts/recent: read:recent_forum_posts
  GET  /forum/posts:        read:all_forum_posts
  POST /forum/posts:        create:forum_post
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from api.limiter import limiter
from api.models import ErrorDetail, ForumPostCreate, ForumPostPage, ForumPostResponse, ForumPostRow, PaginationMeta
from auth.dependencies import require_permission
from auth.models import AuthenticatedPrincipal
from core.config import get_settings
from listing.builder import PageDefaults, build_query
from records.listings import FORUM_POSTS
from records.store import RecordStore

router = APIRouter()

_settings = get_settings()

# /forum/posts/recent returns a short feed: 10 posts by default, at most 50.
_RECENT_DEFAULTS = PageDefaults(page=1, limit=10, max_limit=50)


@limiter.limit(_settings.listing_rate_limit)
@router.get("/forum/posts/recent", response_model=list[ForumPostRow])
def list_recent_forum_posts(
    request: Request,
    principal: AuthenticatedPrincipal = Depends(require_permission("read:recent_forum_posts")),
) -> list[ForumPostRow]:
    """Return the most recent live posts. Only ?limit= is honoured."""
    params = {"limit": request.query_params["limit"]} if "limit" in request.query_params else {}
    store: RecordStore = request.app.state.records
    rows, _page = store.fetch_page(build_query(params, FORUM_POSTS, _RECENT_DEFAULTS))
    return [ForumPostRow(**row) for row in rows]


@limiter.limit(_settings.listing_rate_limit)
@router.get("/forum/posts", response_model=ForumPostPage)
def list_forum_posts(
    request: Request,
    principal: AuthenticatedPrincipal = Depends(require_permission("read:all_forum_posts")),
) -> ForumPostPage:
    """Return one page of posts, newest first. Filters: topic_id, user_id, api_key_id."""
    store: RecordStore = request.app.state.records
    query = build_query(request.query_params, FORUM_POSTS, request.app.state.page_defaults)
    rows, page = store.fetch_page(query)
    return ForumPostPage(
        data=[ForumPostRow(**row) for row in rows],
        pagination=PaginationMeta(**page.to_dict()),
    )


@limiter.limit(_settings.write_rate_limit)
@router.post("/forum/posts", response_model=ForumPostResponse, status_code=201)
def create_forum_post(
    request: Request,
    body: ForumPostCreate,
    principal: AuthenticatedPrincipal = Depends(require_permission("create:forum_post")),
) -> ForumPostResponse:
    """Create a post in an open topic on behalf of the calling API key.

    The post's user_id is left empty; created_by_api_key_id records the key.
    Returns 404 if the topic does not exist, is locked, or was deleted.
    """
    store: RecordStore = request.app.state.records
    post = store.create_forum_post(body.topic_id, body.post_body, api_key_id=principal.credential_id)
    if post is None:
        raise HTTPException(
            status_code=404,
            detail=ErrorDetail(
                code="topic_not_found",
                message=f"Forum topic not found or is locked for ID: {body.topic_id}.",
            ).model_dump(),
        )
    return ForumPostResponse(
        id=post.id,
        topic_id=post.topic_id,
        content=post.content,
        created_at=post.created_at,
        user_id=post.user_id,
        created_by_api_key_id=post.created_by_api_key_id,
    )
