REDIS_USER_KEY = "onra:user:{id}"  # user id - hash
REDIS_USERS_INDEX = "onra:users"  # set of user ids
REDIS_ROOM_KEY = "onra:room:{id}"  # room id - hash
REDIS_ROOMS_INDEX = "onra:rooms"  # set of room ids
REDIS_RECORDING_KEY = "onra:recording:{id}"  # recording id - hash
REDIS_RECORDINGS_INDEX = "onra:recordings"  # set of recording ids
REDIS_COUNTER_KEY = "onra:counter:{entity}"  # users / rooms / recordings - INCR id allocator
REDIS_SESSION_KEY = "onra:session:{token}"  # session token -> user id, with TTL

# **Example `onra:user:{id}` hash fields**
# - `id` = integer
# - `username`, `password`, `email`, `fullName`
# - `role` = "admin" | "user"
# - `roomId` = json integer or null
# - `authId` = json string or null
