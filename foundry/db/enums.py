from enum import Enum


class ContainerEnum(str, Enum):
    platforms = "platforms"
    news = "news"
    topics = "topics"
    config = "config"
    subscribers = "subscribers"
    contact_submissions = "contact-submissions"


# Containers copied by the document migration CLI.
MIGRATED_CONTAINERS = (
    ContainerEnum.platforms,
    ContainerEnum.news,
    ContainerEnum.topics,
    ContainerEnum.config,
    ContainerEnum.subscribers,
)
