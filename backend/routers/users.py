"""
Profile, user search and friends.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import schemas
from database import get_db
from models import FriendRequest, FriendRequestStatus, NotificationType, User
from auth.dependencies import get_current_user
from auth.security import hash_password, verify_password
from realtime.events import EventPublisher, SocketEvent, get_publisher
from services.notifications import notify
from time_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

SEARCH_RESULT_LIMIT = 10


def _pending_between(db: Session, first_id: int, second_id: int):
    return (
        db.query(FriendRequest)
        .filter(
            FriendRequest.status == FriendRequestStatus.pending,
            or_(
                (FriendRequest.sender_id == first_id) & (FriendRequest.receiver_id == second_id),
                (FriendRequest.sender_id == second_id) & (FriendRequest.receiver_id == first_id),
            ),
        )
        .first()
    )


# ============== Profile ==============

@router.get("/profile", response_model=schemas.UserResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=schemas.UserResponse)
def update_profile(
    payload: schemas.ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if payload.username is not None and payload.username.lower() != current_user.username.lower():
        taken = (
            db.query(User)
            .filter(func.lower(User.username) == payload.username.lower(), User.id != current_user.id)
            .first()
        )
        if taken:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken")

    if payload.username is not None:
        current_user.username = payload.username
    if payload.full_name is not None:
        current_user.full_name = payload.full_name
    db.commit()
    db.refresh(current_user)

    logger.info(f"User {current_user.id} updated profile")
    return current_user


@router.put("/change-password", response_model=schemas.Message)
def change_password(
    payload: schemas.PasswordChange,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(payload.current_password, current_user.password_hash):
        logger.info(f"Password change refused for user {current_user.id}: wrong current password")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")

    current_user.password_hash = hash_password(payload.new_password)
    db.commit()

    logger.critical(f"Password changed for user: {current_user.email} (ID: {current_user.id})")
    return {"message": "Password updated successfully"}


@router.get("/search", response_model=List[schemas.UserSummary])
def search_users(
    query: str = Query(""),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Case-insensitive match on username, email or full name; the caller is excluded."""
    term = query.strip()
    if len(term) < 2:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Search query must be at least 2 characters"
        )

    pattern = f"%{term.lower()}%"
    return (
        db.query(User)
        .filter(
            User.id != current_user.id,
            User.is_active == True,  # noqa: E712
            or_(
                func.lower(User.username).like(pattern),
                func.lower(User.email).like(pattern),
                func.lower(User.full_name).like(pattern),
            ),
        )
        .order_by(User.full_name, User.id)
        .limit(SEARCH_RESULT_LIMIT)
        .all()
    )


# ============== Friends ==============

@router.get("/friends", response_model=List[schemas.UserResponse])
def list_friends(current_user: User = Depends(get_current_user)):
    return current_user.friends


@router.get("/friend-requests", response_model=List[schemas.FriendRequestResponse])
def list_friend_requests(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Pending requests addressed to the caller."""
    return (
        db.query(FriendRequest)
        .filter(
            FriendRequest.receiver_id == current_user.id,
            FriendRequest.status == FriendRequestStatus.pending,
        )
        .order_by(FriendRequest.created_at.desc(), FriendRequest.id.desc())
        .all()
    )


@router.post("/friend-request", response_model=schemas.FriendRequestResponse, status_code=status.HTTP_201_CREATED)
def send_friend_request(
    payload: schemas.FriendRequestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    if payload.user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot send a friend request to yourself"
        )

    target = db.query(User).filter(User.id == payload.user_id).first()
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if target in current_user.friends:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You are already friends")

    if _pending_between(db, current_user.id, target.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Friend request already pending")

    friend_request = FriendRequest(sender_id=current_user.id, receiver_id=target.id)
    db.add(friend_request)
    db.flush()

    notify(
        db,
        target.id,
        NotificationType.friend_request,
        "New Friend Request",
        f"{current_user.full_name} sent you a friend request",
        publisher=publisher,
        data={"request_id": friend_request.id, "sender_id": current_user.id},
    )
    db.commit()
    db.refresh(friend_request)

    body = schemas.FriendRequestResponse.model_validate(friend_request).model_dump(mode="json")
    publisher.to_user(target.id, SocketEvent.friend_request_received, {"request": body})
    logger.info(f"Friend request {friend_request.id}: {current_user.id} -> {target.id}")
    return friend_request


@router.put("/friend-request/{request_id}", response_model=schemas.Message)
def respond_to_friend_request(
    request_id: int,
    payload: schemas.FriendRequestAction,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    friend_request = db.query(FriendRequest).filter(FriendRequest.id == request_id).first()
    if friend_request is None or friend_request.receiver_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Friend request not found")

    if friend_request.status != FriendRequestStatus.pending:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Friend request has already been processed"
        )

    sender = friend_request.sender
    friend_request.responded_at = utc_now()
    if payload.action == "accept":
        friend_request.status = FriendRequestStatus.accepted
        if sender not in current_user.friends:
            current_user.friends.append(sender)
        if current_user not in sender.friends:
            sender.friends.append(current_user)
        notify(
            db,
            sender.id,
            NotificationType.friend_accepted,
            "Friend Request Accepted",
            f"{current_user.full_name} accepted your friend request",
            publisher=publisher,
            data={"user_id": current_user.id},
        )
    else:
        friend_request.status = FriendRequestStatus.declined
    db.commit()

    accepted = friend_request.status == FriendRequestStatus.accepted
    if accepted:
        publisher.to_users([current_user.id, sender.id], SocketEvent.friends_updated, {})
    publisher.to_users([current_user.id, sender.id], SocketEvent.friend_requests_updated, {})

    logger.info(f"Friend request {request_id} {friend_request.status.value} by user {current_user.id}")
    return {"message": f"Friend request {friend_request.status.value} successfully"}


@router.delete("/friends/{friend_id}", response_model=schemas.Message)
def remove_friend(
    friend_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    friend = next((user for user in current_user.friends if user.id == friend_id), None)
    if friend is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Friend not found")

    current_user.friends.remove(friend)
    if current_user in friend.friends:
        friend.friends.remove(current_user)
    db.commit()

    publisher.to_users([current_user.id, friend.id], SocketEvent.friends_updated, {})
    logger.info(f"User {current_user.id} removed friend {friend_id}")
    return {"message": "Friend removed successfully"}
