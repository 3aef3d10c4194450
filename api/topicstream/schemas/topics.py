from topicstream.schemas import AppBaseModel


class TopicsResponse(AppBaseModel):
    """GET /topics response."""

    topics: list[str]
