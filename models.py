from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


Base = declarative_base()


class MediaItem(Base):
    __tablename__ = 'media_items'

    post_id = Column(String(100), primary_key=True)
    generation_id = Column(String(100))
    video_url = Column(Text)
    thumbnail_url = Column(Text)
    text = Column(Text)
    username = Column(String(200), index=True)
    user_id = Column(String(100))
    posted_at = Column(Float, index=True)
    width = Column(Integer)
    height = Column(Integer)

    # Local pipeline state
    downloaded_at = Column(DateTime, default=func.now(), index=True)
    local_video_path = Column(Text)
    local_thumbnail_path = Column(Text, default="")

    # Outbound pipeline state
    uploaded_to_object_store = Column(Boolean, default=False, nullable=False)
    object_store_url = Column(Text, nullable=True)
    uploaded_to_cms = Column(Boolean, default=False, nullable=False, index=True)
    cms_token = Column(String(200), nullable=True)

    def __repr__(self):
        return (
            f"<MediaItem(post_id='{self.post_id}', username='{self.username}', "
            f"object_store={self.uploaded_to_object_store}, cms={self.uploaded_to_cms})>"
        )


if __name__ == "__main__":
    from sqlalchemy import create_engine

    engine = create_engine('sqlite:///harvester.db')
    Base.metadata.create_all(engine)
    print("Created tables:", ", ".join(Base.metadata.tables))
