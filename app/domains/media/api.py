# app/domains/media/api.py
from fastapi import APIRouter, Depends, Query

from app.core.container import Services, get_services
from app.domains.auth.dependencies import get_current_user
from app.domains.auth.entities import UserInfo
from app.domains.media.schemas import (
    AddAudioRequest,
    AddYoutubeRequest,
    CreatePlaylistRequest,
    ErrorReportRequest,
    RatingRequest,
    SeekRequest,
    SpeedRequest,
    StartRequest,
    VolumeRequest,
)

router = APIRouter()


@router.get("/{room_id}")
async def list_content(
    room_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return await services.media.list_content(room_id, page=page, limit=limit)


@router.get("/{room_id}/active")
async def active_content(room_id: str, services: Services = Depends(get_services)):
    content = await services.media.get_active_content(room_id)
    return {"content": services.media.content_view(content) if content else None}


@router.get("/{room_id}/stats")
async def media_stats(room_id: str, services: Services = Depends(get_services)):
    return await services.media.media_stats(room_id)


@router.post("/{room_id}/youtube")
async def add_youtube(
    room_id: str,
    request: AddYoutubeRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Добавить YouTube видео в комнату"""
    content = await services.media.add_youtube_content(
        room_id, user.id, request.video_id, request.model_dump(exclude={"video_id"})
    )
    return services.media.content_view(content)


@router.post("/{room_id}/audio")
async def add_audio(
    room_id: str,
    request: AddAudioRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.add_audio_content(room_id, user.id, request.model_dump())
    return services.media.content_view(content)


@router.post("/{room_id}/playlists")
async def create_playlist(
    room_id: str,
    request: CreatePlaylistRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.create_playlist(
        room_id,
        user.id,
        request.title,
        [item.model_dump() for item in request.items],
        shuffle=request.shuffle,
        repeat=request.repeat,
    )
    return services.media.content_view(content)


@router.post("/{room_id}/stop")
async def stop(room_id: str, user: UserInfo = Depends(get_current_user), services: Services = Depends(get_services)):
    return {"stopped": await services.media.stop_content(room_id, user.id)}


@router.post("/{room_id}/{content_id}/start")
async def start(
    room_id: str,
    content_id: str,
    request: StartRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.start(room_id, user.id, content_id, request.position)
    return services.media.content_view(content)


@router.post("/{room_id}/{content_id}/pause")
async def pause(
    room_id: str,
    content_id: str,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.pause(room_id, user.id, content_id)
    return services.media.content_view(content)


@router.post("/{room_id}/{content_id}/seek")
async def seek(
    room_id: str,
    content_id: str,
    request: SeekRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.seek(room_id, user.id, content_id, request.position)
    return services.media.content_view(content)


@router.post("/{room_id}/{content_id}/volume")
async def volume(
    room_id: str,
    content_id: str,
    request: VolumeRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.set_volume(room_id, user.id, content_id, request.volume)
    return services.media.content_view(content)


@router.post("/{room_id}/{content_id}/speed")
async def speed(
    room_id: str,
    content_id: str,
    request: SpeedRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.set_playback_speed(room_id, user.id, content_id, request.speed)
    return services.media.content_view(content)


@router.post("/{room_id}/{content_id}/rating")
async def rate(
    room_id: str,
    content_id: str,
    request: RatingRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Оценить контент (1-5)"""
    content = await services.media.add_rating(room_id, user.id, content_id, request.rating)
    return content.stats.to_dict()


@router.post("/{room_id}/{content_id}/error")
async def report_error(
    room_id: str,
    content_id: str,
    request: ErrorReportRequest,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.report_error(room_id, user.id, content_id, request.code, request.message)
    return services.media.content_view(content)


@router.post("/{room_id}/{content_id}/reset")
async def reset(
    room_id: str,
    content_id: str,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    content = await services.media.reset_content(room_id, user.id, content_id)
    return services.media.content_view(content)


@router.delete("/{room_id}/{content_id}")
async def delete(
    room_id: str,
    content_id: str,
    user: UserInfo = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return {"deleted": await services.media.delete_content(room_id, user.id, content_id)}
