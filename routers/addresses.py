from fastapi import APIRouter, Depends

import accounts
from database import get_db, serialize_doc
from errors import envelope
from schemas import Address, AddressUpdate
from security import get_current_user

router = APIRouter(prefix="/api/addresses", tags=["addresses"])


@router.get("")
def list_addresses(current: dict = Depends(get_current_user)):
    addresses = serialize_doc(current.get("addresses", []))
    return envelope(addresses, count=len(addresses))


@router.get("/default")
def get_default_address(current: dict = Depends(get_current_user)):
    address = accounts.default_address(current)
    if address is None:
        return envelope(None, "No addresses saved")
    return envelope(serialize_doc(address))


@router.post("", status_code=201)
def add_address(body: Address, current: dict = Depends(get_current_user), db=Depends(get_db)):
    return envelope(serialize_doc(accounts.add_address(db, current, body.model_dump())), "Address added")


@router.put("/{address_id}")
def update_address(address_id: str, body: AddressUpdate, current: dict = Depends(get_current_user),
                   db=Depends(get_db)):
    address = accounts.update_address(db, current, address_id, body.model_dump(exclude_unset=True))
    return envelope(serialize_doc(address), "Address updated")


@router.delete("/{address_id}")
def delete_address(address_id: str, current: dict = Depends(get_current_user), db=Depends(get_db)):
    accounts.delete_address(db, current, address_id)
    return envelope(message="Address deleted")


@router.patch("/{address_id}/default")
def set_default_address(address_id: str, current: dict = Depends(get_current_user), db=Depends(get_db)):
    address = accounts.set_default_address(db, current, address_id)
    return envelope(serialize_doc(address), "Default address updated")
