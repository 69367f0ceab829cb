"""
Devnet Candy Machine Service

Talks to a Solana cluster through solana-py's AsyncClient. Every
transaction is signed by the operator identity, sent with finalized
preflight and waited on until it is finalized.

Library and RPC failures are translated into the workflow's typed errors
here, so nothing above this module sees a solana-py exception.
"""

from datetime import datetime, timezone

from construct import ConstructError
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Finalized
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.compute_budget import set_compute_unit_limit
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    InitializeMintParams, MintToParams, create_associated_token_account,
    get_associated_token_address, initialize_mint, mint_to,
)

from .config import Creator
from .errors import (
    AccountNotFoundError, InsufficientFundsError, InventoryError, NetworkError,
    ValidationError,
)
from .instructions import (
    CANDY_GUARD_PROGRAM_ID, CANDY_MACHINE_PROGRAM_ID, MASTER_EDITION_SIZE,
    METADATA_SIZE, MINT_SIZE, TOKEN_ACCOUNT_SIZE, add_config_lines, candy_guard_size,
    candy_machine_size, create_master_edition_v3, create_metadata_account_v3,
    decode_candy_guard, decode_candy_machine, decode_mint_counter, find_candy_guard_pda,
    find_mint_limit_counter_pda, initialize_candy_guard, initialize_candy_machine,
    mint_from_candy_guard, update_candy_guard, wrap,
)
from .service import (
    CandyMachineService, GuardSet, MachineState, Submission, check_guards,
    check_machine_settings, check_mint_allowed,
)

LAMPORTS_PER_SIGNATURE = 5000
MINT_COMPUTE_UNITS = 800_000


def _translate_rpc_error(e, purpose):
    text = str(e)
    if "insufficient" in text.lower():
        return InsufficientFundsError(purpose=purpose, detail=text)
    return NetworkError(f"{purpose} rejected by the cluster", text)


class DevnetService(CandyMachineService):
    """
    CandyMachineService backed by a live cluster.

    Args:
        client: An AsyncClient; its commitment should be finalized.
        identity: Keypair that signs and pays for everything.
    """

    def __init__(self, client, identity):
        self.client = client
        self.identity = identity

    @classmethod
    def connect(cls, config):
        return cls(AsyncClient(config.rpc_url, commitment=Finalized), config.identity)

    async def close(self):
        await self.client.close()

    # --- plumbing ---

    async def _call(self, coro, purpose):
        try:
            return await coro
        except RPCException as e:
            raise _translate_rpc_error(e, purpose)
        except SolanaRpcException as e:
            raise NetworkError(f"{purpose}: RPC request failed", str(e))

    async def _rent(self, space):
        resp = await self._call(
            self.client.get_minimum_balance_for_rent_exemption(space), "rent lookup"
        )
        return resp.value

    async def _ensure_balance(self, needed, purpose):
        resp = await self._call(self.client.get_balance(self.identity.pubkey()), "balance lookup")
        if resp.value < needed:
            raise InsufficientFundsError(needed, resp.value, purpose)
        return resp.value

    async def _send(self, instructions, extra_signers, purpose):
        """Sign, send and wait for finalized confirmation; return the signature."""
        signers = [self.identity] + list(extra_signers)
        latest = await self._call(self.client.get_latest_blockhash(Finalized), "blockhash lookup")
        blockhash = latest.value.blockhash
        message = Message.new_with_blockhash(instructions, self.identity.pubkey(), blockhash)
        tx = Transaction(signers, message, blockhash)

        resp = await self._call(
            self.client.send_transaction(tx, opts=TxOpts(preflight_commitment=Finalized)),
            purpose,
        )
        signature = resp.value
        try:
            status = await self._call(
                self.client.confirm_transaction(
                    signature,
                    commitment=Finalized,
                    last_valid_block_height=latest.value.last_valid_block_height,
                ),
                purpose,
            )
        except UnconfirmedTxError as e:
            raise NetworkError(f"{purpose}: transaction {signature} was not finalized", str(e))

        result = status.value[0] if status.value else None
        if result is not None and result.err is not None:
            raise ValidationError(f"{purpose}: transaction {signature} failed", str(result.err))
        return signature

    def _fee(self, signer_count):
        return LAMPORTS_PER_SIGNATURE * signer_count

    def _new_mint_instructions(self, mint, owner, mint_rent):
        payer = self.identity.pubkey()
        return [
            create_account(CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=mint,
                lamports=mint_rent,
                space=MINT_SIZE,
                owner=TOKEN_PROGRAM_ID,
            )),
            initialize_mint(InitializeMintParams(
                decimals=0,
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                mint_authority=payer,
                freeze_authority=payer,
            )),
            create_associated_token_account(payer, owner, mint),
            mint_to(MintToParams(
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                dest=get_associated_token_address(owner, mint),
                mint_authority=payer,
                amount=1,
            )),
        ]

    async def _nft_cost(self, signer_count):
        mint_rent = await self._rent(MINT_SIZE)
        total = mint_rent + self._fee(signer_count)
        for space in (TOKEN_ACCOUNT_SIZE, METADATA_SIZE, MASTER_EDITION_SIZE):
            total += await self._rent(space)
        return mint_rent, total

    # --- CandyMachineService ---

    async def create_collection(self, request):
        payer = self.identity.pubkey()
        mint = Keypair()
        mint_rent, needed = await self._nft_cost(signer_count=2)
        await self._ensure_balance(needed, "collection NFT")

        instructions = self._new_mint_instructions(mint.pubkey(), payer, mint_rent)
        instructions.append(create_metadata_account_v3(
            mint=mint.pubkey(),
            mint_authority=payer,
            payer=payer,
            update_authority=payer,
            name=request.name,
            symbol=request.symbol,
            uri=request.uri,
            seller_fee_basis_points=request.seller_fee_basis_points,
            creators=[(payer, 100)],
            is_collection=request.is_collection,
        ))
        instructions.append(create_master_edition_v3(
            mint=mint.pubkey(),
            update_authority=payer,
            mint_authority=payer,
            payer=payer,
            max_supply=0,
        ))
        signature = await self._send(instructions, [mint], "collection NFT")
        return Submission(signature=signature, address=mint.pubkey())

    async def create_machine(self, settings):
        check_machine_settings(settings)
        payer = self.identity.pubkey()
        candy_machine = Keypair()
        base = Keypair()
        candy_guard = find_candy_guard_pda(base.pubkey())

        space = candy_machine_size(settings.items_available)
        machine_rent = await self._rent(space)
        guard_rent = await self._rent(candy_guard_size(GuardSet()))
        await self._ensure_balance(machine_rent + guard_rent + self._fee(3), "candy machine")

        instructions = [
            create_account(CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=candy_machine.pubkey(),
                lamports=machine_rent,
                space=space,
                owner=CANDY_MACHINE_PROGRAM_ID,
            )),
            initialize_candy_machine(
                candy_machine.pubkey(), authority=payer, payer=payer,
                settings=settings, collection_update_authority=payer,
            ),
            initialize_candy_guard(base.pubkey(), authority=payer, payer=payer),
            wrap(candy_guard, payer, candy_machine.pubkey(), payer),
        ]
        signature = await self._send(instructions, [candy_machine, base], "candy machine")
        return Submission(signature=signature, address=candy_machine.pubkey())

    async def find_machine(self, address):
        resp = await self._call(self.client.get_account_info(address), "candy machine lookup")
        if resp.value is None:
            raise AccountNotFoundError(address, "candy machine")
        if resp.value.owner != CANDY_MACHINE_PROGRAM_ID:
            raise ValidationError(f"{address} is not a candy machine account")
        try:
            account, items_loaded = decode_candy_machine(bytes(resp.value.data))
        except ConstructError as e:
            raise ValidationError(f"could not decode candy machine {address}", str(e))

        data = account.data
        machine = MachineState(
            address=address,
            authority=_pubkey(account.authority),
            collection_mint=_pubkey(account.collection_mint),
            candy_guard=None,
            items_available=data.items_available,
            items_loaded=items_loaded,
            items_redeemed=account.items_redeemed,
            symbol=data.symbol.rstrip("\x00"),
            seller_fee_basis_points=data.seller_fee_basis_points,
            max_edition_supply=data.max_supply,
            is_mutable=data.is_mutable,
            creators=[Creator(_pubkey(c.address), c.percentage_share) for c in data.creators],
        )

        mint_authority = _pubkey(account.mint_authority)
        guard_resp = await self._call(
            self.client.get_account_info(mint_authority), "candy guard lookup"
        )
        if guard_resp.value is not None and guard_resp.value.owner == CANDY_GUARD_PROGRAM_ID:
            try:
                _, machine.guards = decode_candy_guard(bytes(guard_resp.value.data))
            except ConstructError as e:
                raise ValidationError(f"could not decode candy guard {mint_authority}", str(e))
            machine.candy_guard = mint_authority
        return machine

    async def update_guards(self, machine, guards):
        if machine.candy_guard is None:
            raise ValidationError(f"candy machine {machine.address} has no candy guard")
        check_guards(guards)
        payer = self.identity.pubkey()
        await self._ensure_balance(
            await self._rent(candy_guard_size(guards)) + self._fee(1), "guard update"
        )
        instruction = update_candy_guard(machine.candy_guard, payer, payer, guards)
        signature = await self._send([instruction], [], "guard update")
        return Submission(signature=signature)

    async def insert_items(self, machine, items):
        if machine.items_loaded + len(items) > machine.items_available:
            raise InventoryError(
                f"cannot add {len(items)} items: {machine.items_loaded} of "
                f"{machine.items_available} already loaded"
            )
        await self._ensure_balance(self._fee(1), "config lines")
        instruction = add_config_lines(
            machine.address, self.identity.pubkey(), machine.items_loaded, items
        )
        signature = await self._send([instruction], [], "config lines")
        return Submission(signature=signature)

    async def _minted_count(self, machine, minter):
        limit = machine.guards.mint_limit
        if limit is None:
            return 0
        counter = find_mint_limit_counter_pda(limit.id, minter, machine.candy_guard, machine.address)
        resp = await self._call(self.client.get_account_info(counter), "mint counter lookup")
        if resp.value is None:
            return 0
        try:
            return decode_mint_counter(bytes(resp.value.data))
        except ConstructError as e:
            raise ValidationError(f"could not decode mint counter {counter}", str(e))

    async def mint(self, machine, owner):
        if machine.candy_guard is None:
            raise ValidationError(f"candy machine {machine.address} has no candy guard")
        payer = self.identity.pubkey()
        nft_mint = Keypair()

        mint_rent, cost = await self._nft_cost(signer_count=2)
        balance = await self._call(self.client.get_balance(payer), "balance lookup")
        check_mint_allowed(
            machine,
            now=datetime.now(timezone.utc),
            balance=balance.value,
            cost=cost,
            minted=await self._minted_count(machine, payer),
        )

        instructions = [set_compute_unit_limit(MINT_COMPUTE_UNITS)]
        instructions += self._new_mint_instructions(nft_mint.pubkey(), owner, mint_rent)
        instructions.append(mint_from_candy_guard(
            machine, payer, nft_mint.pubkey(), collection_update_authority=payer
        ))
        signature = await self._send(instructions, [nft_mint], "mint")
        return Submission(signature=signature, address=nft_mint.pubkey())


def _pubkey(raw):
    return Pubkey.from_bytes(raw)
